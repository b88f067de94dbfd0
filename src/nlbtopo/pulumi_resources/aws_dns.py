import pulumi
import pulumi_aws as aws

import nlbtopo.model


class AWSZone(pulumi.ComponentResource):
    """
    A public hosted zone and the DNS-validated certificates issued for names inside it.

    Validation only completes once the parent domain delegates to `zone.name_servers`; until then
    the `CertificateValidation` resources sit waiting and anything consuming
    `validated_certificate_arns` waits with them.
    """

    name: str
    zone: aws.route53.Zone
    certificates: dict[nlbtopo.model.ResourceId, aws.acm.Certificate]
    validation_records: dict[nlbtopo.model.ResourceId, pulumi.Output[list[aws.route53.Record]]]
    validated_certificate_arns: dict[nlbtopo.model.ResourceId, pulumi.Output[str]]
    alias_records: dict[nlbtopo.model.ResourceId, aws.route53.Record]

    def __init__(
        self,
        zone: nlbtopo.model.Zone,
        tags: dict[str, str],
        protect: bool = False,
        *args,
        **kwargs,
    ):
        super().__init__(f"nlbtopo:{self.__class__.__name__}", zone.label, *args, **kwargs)

        self.name = zone.label
        self.tags = tags
        self.certificates = {}
        self.validation_records = {}
        self.validated_certificate_arns = {}
        self.alias_records = {}

        self.zone = aws.route53.Zone(
            self.name,
            name=zone.domain,
            comment=f"Public hosted zone for {zone.domain}",
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self, protect=protect),
        )

        self.register_outputs(
            {
                "zone_id": self.zone.zone_id,
                "name_servers": self.zone.name_servers,
            }
        )

    def _build_validation_function(self, record: nlbtopo.model.ValidationRecord):
        def _build_validation_records(domain_validation_options):
            # a cert for a name and its wildcard shares one record; dedupe on the value
            unique = {dvo.resource_record_value: dvo for dvo in (domain_validation_options or [])}
            return [
                aws.route53.Record(
                    f"{record.label}-{i}",
                    name=dvo.resource_record_name,
                    records=[dvo.resource_record_value],
                    ttl=60,
                    type=dvo.resource_record_type,
                    zone_id=self.zone.zone_id,
                    allow_overwrite=True,
                    opts=pulumi.ResourceOptions(parent=self.zone, delete_before_replace=True),
                )
                for i, dvo in enumerate(unique.values())
            ]

        return _build_validation_records

    def with_certificate(
        self,
        certificate: nlbtopo.model.Certificate,
        records: list[nlbtopo.model.ValidationRecord],
    ):
        cert = aws.acm.Certificate(
            certificate.label,
            domain_name=certificate.domain,
            validation_method="DNS",
            tags=self.tags | {"Name": certificate.domain},
            opts=pulumi.ResourceOptions(parent=self),
        )
        self.certificates[certificate.id] = cert

        fqdns: list[pulumi.Output[list[str]]] = []
        for record in records:
            validation_records = cert.domain_validation_options.apply(self._build_validation_function(record))
            self.validation_records[record.id] = validation_records
            fqdns.append(validation_records.apply(lambda cvr: pulumi.Output.all(*[rec.fqdn for rec in cvr])))

        validation = aws.acm.CertificateValidation(
            f"{certificate.label}-validation",
            certificate_arn=cert.arn,
            validation_record_fqdns=pulumi.Output.all(*fqdns).apply(
                lambda lists: sorted(fqdn for fqdn_list in lists for fqdn in fqdn_list)
            ),  # type: ignore
            opts=pulumi.ResourceOptions(parent=cert),
        )
        self.validated_certificate_arns[certificate.id] = validation.certificate_arn

        return self

    def with_alias(
        self,
        alias: nlbtopo.model.AliasRecord,
        dns_name: pulumi.Input[str],
        zone_id: pulumi.Input[str],
    ):
        self.alias_records[alias.id] = aws.route53.Record(
            alias.label,
            zone_id=self.zone.zone_id,
            name=alias.name,
            type="A",
            aliases=[
                aws.route53.RecordAliasArgs(
                    name=dns_name,
                    zone_id=zone_id,
                    evaluate_target_health=alias.evaluate_target_health,
                )
            ],
            opts=pulumi.ResourceOptions(parent=self.zone),
        )

        return self
