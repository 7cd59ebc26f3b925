# -*- coding: utf-8 -*-
"""vault_cloudauth

Authenticate a process to HashiCorp Vault with a cloud identity, keep the
resulting token and any leased secrets renewed for the life of the process,
and encrypt/decrypt application data through the transit engine.

"""

from vault_cloudauth.config import AuthMethod, Credential, SessionConfig
from vault_cloudauth.exceptions import VaultSessionError, \
    ConfigurationError, \
    UnsupportedAuthMethod, \
    AvailabilityError, \
    UpstreamError, \
    ResponseShapeError, \
    NotAuthenticatedError, \
    RenewalError, \
    RenewalExhaustedError, \
    TransportError, \
    LeaseNotRenewable
from vault_cloudauth.providers import IdentityProofProvider, \
    StaticTokenProvider, \
    AppRoleProvider, \
    KubernetesProvider, \
    AWSIAMProvider, \
    AWSEC2Provider, \
    GCPIAMProvider, \
    GCPGCEProvider, \
    AzureMSIProvider
from vault_cloudauth.authenticator import Authenticator, SessionToken
from vault_cloudauth.renewer import LeaseSupervisor, \
    RenewalFailurePolicy, \
    RenewalOutcome, \
    SupervisorState, \
    TokenLease, \
    SecretLease
from vault_cloudauth.gateway import SecretGateway, SecretRecord, LeasedSecret
from vault_cloudauth.session import VaultSession
from vault_cloudauth.decorators import InjectSecretValue, InjectKeywordedSecret
from ._version import __version__

__all__ = ["__version__",
           "AuthMethod",
           "Credential",
           "SessionConfig",
           "VaultSessionError",
           "ConfigurationError",
           "UnsupportedAuthMethod",
           "AvailabilityError",
           "UpstreamError",
           "ResponseShapeError",
           "NotAuthenticatedError",
           "RenewalError",
           "RenewalExhaustedError",
           "TransportError",
           "LeaseNotRenewable",
           "IdentityProofProvider",
           "StaticTokenProvider",
           "AppRoleProvider",
           "KubernetesProvider",
           "AWSIAMProvider",
           "AWSEC2Provider",
           "GCPIAMProvider",
           "GCPGCEProvider",
           "AzureMSIProvider",
           "Authenticator",
           "SessionToken",
           "LeaseSupervisor",
           "RenewalFailurePolicy",
           "RenewalOutcome",
           "SupervisorState",
           "TokenLease",
           "SecretLease",
           "SecretGateway",
           "SecretRecord",
           "LeasedSecret",
           "VaultSession",
           "InjectSecretValue",
           "InjectKeywordedSecret"]
