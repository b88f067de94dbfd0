"""Pulumi program: applies the deployment named by the selected stack."""

import nlbtopo.pulumi_resources.aws_topology

nlbtopo.pulumi_resources.aws_topology.AWSTopology.autoload()
