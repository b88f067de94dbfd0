import pytest

from nlbtopo.junkdrawer import dashify, is_within_domain, json_signature, print_steps


def test_json_signature_ignores_key_order():
    assert json_signature({"a": 1, "b": [1, 2]}) == json_signature({"b": [1, 2], "a": 1})


def test_json_signature_detects_changes():
    assert json_signature({"a": 1}) != json_signature({"a": 2})


def test_json_signature_handles_non_json_values():
    import ipaddress

    sig = json_signature({"cidr": ipaddress.ip_network("10.0.0.0/24")})
    assert sig == json_signature({"cidr": "10.0.0.0/24"})


@pytest.mark.parametrize(
    ("domain", "expected"),
    [
        ("example.test", "example-test"),
        ("nlb.example.test.", "nlb-example-test"),
    ],
)
def test_dashify(domain, expected):
    assert dashify(domain) == expected


@pytest.mark.parametrize(
    ("name", "domain", "expected"),
    [
        ("example.test", "example.test", True),
        ("www.example.test", "example.test", True),
        ("WWW.Example.Test.", "example.test", True),
        ("badexample.test", "example.test", False),
        ("example.test.evil", "example.test", False),
    ],
)
def test_is_within_domain(name, domain, expected):
    assert is_within_domain(name, domain) is expected


def test_print_steps(capsys):
    print_steps([("zone/example.test", None), ("network/testing01-development", None)])

    out = capsys.readouterr().out
    assert "∙ zone/example.test" in out
    assert "∙ network/testing01-development" in out
