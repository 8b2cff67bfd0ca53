import base64

import pytest
from botocore.exceptions import ClientError

from rollout_automation.errors import SecretResolutionError
from rollout_automation.secrets import SecretResolver


class FakeClient:
    def __init__(self, secrets, calls):
        self.secrets = secrets
        self.calls = calls

    def get_secret_value(self, SecretId):
        self.calls.append(SecretId)
        if SecretId not in self.secrets:
            raise ClientError({"Error": {"Code": "ResourceNotFoundException", "Message": "nope"}}, "GetSecretValue")
        return self.secrets[SecretId]


@pytest.fixture
def fake_boto3(monkeypatch):
    calls: list[str] = []
    secrets = {
        "plain": {"SecretString": "mypassword"},
        "db": {"SecretString": '{"user":"app","password":"sekret"}'},
        "blob": {"SecretBinary": base64.b64encode(b"binary-value")},
    }

    class FakeBoto3:
        def client(self, name):
            assert name == "secretsmanager"
            return FakeClient(secrets, calls)

    monkeypatch.setattr("rollout_automation.secrets.boto3", FakeBoto3())
    return calls


def test_secret_resolver_plaintext_with_key(fake_boto3):
    values = SecretResolver().resolve({"password": {"aws_secret": "plain", "key": "password"}})
    assert values["password"] == "mypassword"


def test_secret_resolver_json_key_and_nesting(fake_boto3):
    values = SecretResolver().resolve(
        {
            "PORT": 5000,
            "db": {"user": {"aws_secret": "db", "key": "user"}, "hosts": ["a", {"aws_secret": "blob"}]},
        }
    )

    assert values["PORT"] == 5000
    assert values["db"]["user"] == "app"
    assert values["db"]["hosts"] == ["a", "binary-value"]


def test_secret_resolver_caches_lookups(fake_boto3):
    resolver = SecretResolver()
    resolver.resolve({"a": {"aws_secret": "db", "key": "password"}})
    resolver.resolve({"b": {"aws_secret": "db", "key": "password"}})

    assert fake_boto3 == ["db"]


def test_secret_resolver_missing_json_key(fake_boto3):
    with pytest.raises(SecretResolutionError):
        SecretResolver().resolve({"x": {"aws_secret": "db", "key": "token"}})


def test_secret_resolver_wraps_client_errors(fake_boto3):
    with pytest.raises(SecretResolutionError) as excinfo:
        SecretResolver().resolve({"x": {"aws_secret": "absent"}})

    assert "absent" in str(excinfo.value)


def test_plain_variables_never_touch_aws(monkeypatch):
    class ExplodingBoto3:
        def client(self, name):
            raise AssertionError("no secret lookups expected")

    monkeypatch.setattr("rollout_automation.secrets.boto3", ExplodingBoto3())

    assert SecretResolver().resolve({"PORT": 5000, "tags": ["a"]}) == {"PORT": 5000, "tags": ["a"]}
