# -*- coding: utf-8 -*-
"""Configuration values needed to open a vault session.

Nothing here talks to the network. Which fields must be filled in depends on
the authentication method and is checked by the identity proof provider at
authentication time, so a config can be built before the method is known to
be usable.
"""

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from urllib.parse import urlparse

DEFAULT_SERVER = "http://127.0.0.1:8200"
DEFAULT_TIMEOUT = 30


class AuthMethod(str, Enum):
    TOKEN = "token"
    APPROLE = "approle"
    KUBERNETES = "kubernetes"
    AWS_IAM = "aws-iam"
    AWS_EC2 = "aws-ec2"
    GCP_IAM = "gcp-iam"
    GCP_GCE = "gcp-gce"
    AZURE_MSI = "azure-msi"


@dataclass(frozen=True)
class Credential:
    """Method specific credential bundle.

    Only the fields the chosen method needs are expected to be populated:

    ============  =============================================
    token         ``token``
    approle       ``role_id``, ``secret_id``
    kubernetes    ``jwt_path``
    aws-iam       ``role_arn`` (optional), ``region``, ``server_id_header``
    aws-ec2       ``nonce`` (optional)
    gcp-iam       ``service_account``
    gcp-gce       ``service_account`` (optional, non default account)
    azure-msi     ``resource``
    ============  =============================================
    """
    token: str = ""
    role_id: str = ""
    secret_id: str = ""
    jwt_path: str = ""
    role_arn: str = ""
    service_account: str = ""
    resource: str = ""
    region: str = ""
    server_id_header: str = ""
    nonce: str = ""

    def __repr__(self):
        # never print secret material
        populated = [f.name for f in fields(self) if getattr(self, f.name)]
        return f"Credential(populated={populated})"


@dataclass(frozen=True)
class SessionConfig:
    host: str = "127.0.0.1"
    port: int = 8200
    scheme: str = "http"
    authentication: str = AuthMethod.TOKEN.value
    mount: str = ""
    role: str = ""
    credential: Credential = field(default_factory=Credential)
    timeout: float = DEFAULT_TIMEOUT
    verify: bool = True

    @property
    def address(self):
        return f"{self.scheme}://{self.host}:{self.port}"

    def value_of(self, name):
        """Look a required field up on the config or its credential bundle."""
        if hasattr(self, name) and name != "credential":
            return getattr(self, name)
        return getattr(self.credential, name, None)

    @classmethod
    def from_mapping(cls, mapping):
        """Build a config from an already parsed mapping.

        The mapping may be flat or nested under a ``vault`` key, and may give
        the server either as a ``server`` URL or as ``host``/``port``/``scheme``.
        Credential fields can be given inline or under ``credential``.
        """
        mapping = {str(k).lower(): v for k, v in mapping.items()}
        if "vault" in mapping and isinstance(mapping["vault"], dict):
            mapping = {str(k).lower(): v for k, v in mapping["vault"].items()}

        server = _split_server(mapping.get("server") or DEFAULT_SERVER)
        for key in ("host", "port", "scheme"):
            if mapping.get(key):
                server[key] = mapping[key]

        credential_names = {f.name for f in fields(Credential)}
        credential_values = {k: v for k, v in mapping.items() if k in credential_names}
        nested = mapping.get("credential")
        if isinstance(nested, dict):
            credential_values.update({str(k).lower(): v for k, v in nested.items()
                                      if str(k).lower() in credential_names})

        return cls(host=server["host"],
                   port=int(server["port"]),
                   scheme=server["scheme"],
                   authentication=str(mapping.get("authentication") or AuthMethod.TOKEN.value),
                   mount=mapping.get("mount") or "",
                   role=mapping.get("role") or "",
                   credential=Credential(**{k: str(v) for k, v in credential_values.items() if v}),
                   timeout=float(mapping.get("timeout") or DEFAULT_TIMEOUT),
                   verify=_as_bool(mapping.get("verify", True)))

    @classmethod
    def from_env(cls, environ=None):
        if environ is None:
            environ = os.environ
        return cls.from_mapping({
            "server": environ.get("VAULT_ADDR", DEFAULT_SERVER),
            "authentication": environ.get("VAULT_AUTH_METHOD", AuthMethod.TOKEN.value),
            "mount": environ.get("VAULT_AUTH_MOUNT", ""),
            "role": environ.get("VAULT_ROLE", ""),
            "timeout": environ.get("VAULT_CLIENT_TIMEOUT", DEFAULT_TIMEOUT),
            "verify": not _as_bool(environ.get("VAULT_SKIP_VERIFY", "")),
            "credential": {
                "token": environ.get("VAULT_TOKEN", ""),
                "role_id": environ.get("VAULT_ROLE_ID", ""),
                "secret_id": environ.get("VAULT_SECRET_ID", ""),
                "jwt_path": environ.get("VAULT_JWT_PATH", ""),
                "role_arn": environ.get("VAULT_AWS_ROLE_ARN", ""),
                "service_account": environ.get("VAULT_GCP_SERVICE_ACCOUNT", ""),
                "resource": environ.get("VAULT_AZURE_RESOURCE", ""),
            },
        })


def _split_server(server):
    parsed = urlparse(server if "://" in server else f"http://{server}")
    port = parsed.port
    if port is None:
        port = 443 if parsed.scheme == "https" else 8200
    return {"host": parsed.hostname or "127.0.0.1", "port": port, "scheme": parsed.scheme}


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
