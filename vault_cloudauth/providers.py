# -*- coding: utf-8 -*-
"""Identity proof providers.

Each provider turns a :class:`SessionConfig` into the body of a vault login
request for one authentication method. The :class:`Authenticator` is the
context that picks a provider and submits what it produces; the providers are
the strategies and know nothing about vault tokens.

Method        Proof
============  ==============================================================
token         none, the configured token is used as is
approle       role_id / secret_id pair
kubernetes    service account JWT read from the pod filesystem
aws-iam       SigV4 signed sts:GetCallerIdentity request
aws-ec2       PKCS7 signed instance identity document from instance metadata
gcp-iam       JWT signed by the IAM credentials API for a service account
gcp-gce       identity token from the GCE metadata server
azure-msi     managed identity access token from the Azure metadata service
"""

import base64
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from urllib.parse import urlparse

import boto3
import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import requests
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError, ClientError
from google.auth.compute_engine import _metadata
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import AuthMethod
from .exceptions import AvailabilityError, ConfigurationError, ResponseShapeError, UpstreamError

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
STS_ENDPOINT = "https://sts.amazonaws.com/"
STS_DEFAULT_REGION = "us-east-1"
STS_REQUEST_BODY = "Action=GetCallerIdentity&Version=2011-06-15"
EC2_METADATA_URL = "http://169.254.169.254/latest"
AZURE_MSI_URL = "http://169.254.169.254/metadata/identity/oauth2/token"
AZURE_MSI_API_VERSION = "2018-02-01"
SIGNED_JWT_LIFETIME = 600

# connection level failures mean nothing is listening, anything else is an answer
METADATA_UNREACHABLE_EXCEPTIONS = (requests.exceptions.ConnectionError,
                                   requests.exceptions.Timeout)


class IdentityProofProvider(ABC):
    """Abstract base for one authentication method.

    Subclasses declare the config fields they need in ``required``; those are
    checked by :meth:`validate` before anything touches the network.
    """

    method = None
    required = ()
    default_mount = ""
    login_required = True

    def validate(self, config):
        for name in self.required:
            if not self.value_of(config, name):
                raise ConfigurationError(self.method.value, name)

    def value_of(self, config, name):
        if name == "mount":
            return self.mount_for(config)
        return config.value_of(name)

    def mount_for(self, config):
        return config.mount or self.default_mount

    def login_path(self, config):
        return f"auth/{self.mount_for(config)}/login"

    @abstractmethod
    def prove(self, config):
        """Build the login payload.

        Args:
            config (SessionConfig): validated configuration.

        Returns:
            dict: body for ``POST auth/{mount}/login``.
        """
        return None


class StaticTokenProvider(IdentityProofProvider):
    """Adopts a pre-issued token, skipping the login exchange."""

    method = AuthMethod.TOKEN
    required = ("token",)
    login_required = False

    def __init__(self, environ=None):
        self._environ = os.environ if environ is None else environ

    def value_of(self, config, name):
        if name == "token":
            return self.token_for(config)
        return super(StaticTokenProvider, self).value_of(config, name)

    def token_for(self, config):
        # configured token first, then the conventional environment variable
        return config.credential.token or self._environ.get("VAULT_TOKEN", "")

    def prove(self, config):
        return {}


class AppRoleProvider(IdentityProofProvider):
    method = AuthMethod.APPROLE
    required = ("role_id", "secret_id")
    default_mount = "approle"

    def prove(self, config):
        return {"role_id": config.credential.role_id,
                "secret_id": config.credential.secret_id}


class KubernetesProvider(IdentityProofProvider):
    """Reads the projected service account token of the pod."""

    method = AuthMethod.KUBERNETES
    required = ("mount", "role", "jwt_path")

    def prove(self, config):
        logging.getLogger(__name__).info(f"Reading service account token {config.credential.jwt_path}")
        with open(config.credential.jwt_path, "r", encoding="utf-8") as jwt_file:
            jwt = jwt_file.read().strip()
        return {"jwt": jwt, "role": config.role}


class AWSIAMProvider(IdentityProofProvider):
    """Signs an sts:GetCallerIdentity request for the vault aws auth method.

    Uses the ambient boto3 credential chain, or assumes ``role_arn`` first when
    one is configured. The signed request is not sent; vault replays it.
    """

    method = AuthMethod.AWS_IAM
    required = ("mount", "role")

    def __init__(self, _session_callback=None):
        self._session_callback = _session_callback

    def _session(self):
        if self._session_callback is not None:
            return self._session_callback()
        return boto3.session.Session()

    def _credentials(self, config):
        session = self._session()
        try:
            if config.credential.role_arn:
                logging.getLogger(__name__).info(f"Assuming {config.credential.role_arn}")
                response = session.client("sts").assume_role(
                    RoleArn=config.credential.role_arn,
                    RoleSessionName="vault-cloudauth")
                assumed = response["Credentials"]
                return Credentials(assumed["AccessKeyId"],
                                   assumed["SecretAccessKey"],
                                   assumed["SessionToken"])
            logging.getLogger(__name__).info("Using ambient AWS credentials")
            credentials = session.get_credentials()
        except ClientError as e:
            raise UpstreamError("sts:AssumeRole",
                                e.response.get("ResponseMetadata", {}).get("HTTPStatusCode"),
                                e.response.get("Error")) from e
        except BotoCoreError as e:
            raise AvailabilityError(f"AWS credentials ({e})") from e
        if credentials is None:
            raise AvailabilityError("AWS credentials")
        return credentials.get_frozen_credentials()

    def prove(self, config):
        credentials = self._credentials(config)
        region = config.credential.region or STS_DEFAULT_REGION
        endpoint = sts_endpoint(region)
        headers = {"Content-Type": "application/x-www-form-urlencoded; charset=utf-8",
                   "Host": urlparse(endpoint).netloc}
        if config.credential.server_id_header:
            headers["X-Vault-AWS-IAM-Server-ID"] = config.credential.server_id_header
        request = AWSRequest(method="POST", url=endpoint, data=STS_REQUEST_BODY,
                             headers=headers)
        SigV4Auth(credentials, "sts", region).add_auth(request)

        signed_headers = {k: [v] for k, v in request.headers.items()}
        return {
            "iam_http_request_method": request.method,
            "iam_request_url": _b64(request.url),
            "iam_request_headers": _b64(json.dumps(signed_headers)),
            "iam_request_body": _b64(STS_REQUEST_BODY),
            "role": config.role,
        }


class AWSEC2Provider(IdentityProofProvider):
    """Fetches the PKCS7 instance identity document, IMDSv2 when offered."""

    method = AuthMethod.AWS_EC2
    required = ("mount", "role")

    def __init__(self, _http=None):
        self._http = _http if _http is not None else requests.Session()

    def _imds_headers(self, config):
        try:
            response = self._http.put(f"{EC2_METADATA_URL}/api/token",
                                      headers={"X-aws-ec2-metadata-token-ttl-seconds": "60"},
                                      timeout=config.timeout)
        except METADATA_UNREACHABLE_EXCEPTIONS as e:
            raise AvailabilityError("EC2 metadata service") from e
        # IMDSv1 only instances refuse the token request
        if response.status_code == 200:
            return {"X-aws-ec2-metadata-token": response.text}
        return {}

    def prove(self, config):
        headers = self._imds_headers(config)
        try:
            response = self._http.get(f"{EC2_METADATA_URL}/dynamic/instance-identity/pkcs7",
                                      headers=headers, timeout=config.timeout)
        except METADATA_UNREACHABLE_EXCEPTIONS as e:
            raise AvailabilityError("EC2 metadata service") from e
        if response.status_code != 200:
            raise UpstreamError("EC2 metadata service", response.status_code, response.text)

        payload = {"role": config.role, "pkcs7": response.text.strip().replace("\n", "")}
        if config.credential.nonce:
            payload["nonce"] = config.credential.nonce
        return payload


class GCPIAMProvider(IdentityProofProvider):
    """Has the IAM credentials API sign a JWT for the configured service account."""

    method = AuthMethod.GCP_IAM
    required = ("mount", "role", "service_account")

    def __init__(self, _credentials_callback=None):
        self._credentials_callback = _credentials_callback

    @property
    def credentials(self):
        try:
            if self._credentials_callback is not None:
                _credentials, _project_id = self._credentials_callback()
            else:
                _credentials, _project_id = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        except google.auth.exceptions.DefaultCredentialsError as e:
            raise AvailabilityError("Google application default credentials") from e
        return _credentials

    def prove(self, config):
        service_account = config.credential.service_account
        jwt_payload = {
            "aud": f"vault/{config.role}",
            "sub": service_account,
            "exp": int(time.time()) + SIGNED_JWT_LIFETIME,
        }

        iam_service = build("iamcredentials", "v1", credentials=self.credentials,
                            cache_discovery=False)
        sign_req = iam_service.projects().serviceAccounts().signJwt(
            name=f"projects/-/serviceAccounts/{service_account}",
            body={"payload": json.dumps(jwt_payload)})
        try:
            response = sign_req.execute()
        except HttpError as e:
            raise UpstreamError("iamcredentials.signJwt", e.resp.status,
                                e.content.decode("utf-8", "replace")) from e

        if "signedJwt" not in response:
            raise ResponseShapeError("iamcredentials.signJwt", "signedJwt")
        return {"role": config.role, "jwt": response["signedJwt"]}


class GCPGCEProvider(IdentityProofProvider):
    """Requests an instance identity token from the GCE metadata server."""

    method = AuthMethod.GCP_GCE
    required = ("mount", "role")

    def __init__(self, _http=None):
        self._http = _http if _http is not None else requests.Session()

    def prove(self, config):
        request = google.auth.transport.requests.Request(session=self._http)
        if not _metadata.ping(request, timeout=config.timeout):
            raise AvailabilityError("GCE metadata service")

        service_account = config.credential.service_account or "default"
        try:
            jwt = _metadata.get(request,
                                f"instance/service-accounts/{service_account}/identity",
                                params={"audience": f"{config.address}/vault/{config.role}",
                                        "format": "full"})
        except google.auth.exceptions.TransportError as e:
            raise UpstreamError("GCE metadata service", None, str(e)) from e
        return {"role": config.role, "jwt": jwt}


class AzureMSIProvider(IdentityProofProvider):
    """Exchanges the VM managed identity for an access token on ``resource``."""

    method = AuthMethod.AZURE_MSI
    required = ("mount", "role", "resource")

    def __init__(self, _http=None):
        self._http = _http if _http is not None else requests.Session()

    def prove(self, config):
        try:
            response = self._http.get(AZURE_MSI_URL,
                                      params={"api-version": AZURE_MSI_API_VERSION,
                                              "resource": config.credential.resource},
                                      headers={"Metadata": "true"},
                                      timeout=config.timeout)
        except METADATA_UNREACHABLE_EXCEPTIONS as e:
            raise AvailabilityError("Azure instance metadata service") from e

        if response.status_code != 200:
            raise UpstreamError("Azure instance metadata service", response.status_code,
                                response.text)
        try:
            access_token = response.json()["access_token"]
        except (ValueError, KeyError) as e:
            raise ResponseShapeError("Azure instance metadata service", "access_token") from e
        return {"role": config.role, "jwt": access_token}


PROVIDERS = {provider.method.value: provider for provider in (StaticTokenProvider,
                                                               AppRoleProvider,
                                                               KubernetesProvider,
                                                               AWSIAMProvider,
                                                               AWSEC2Provider,
                                                               GCPIAMProvider,
                                                               GCPGCEProvider,
                                                               AzureMSIProvider)}


def sts_endpoint(region):
    """STS endpoint a request signed for ``region`` must be sent to.

    Vault replays the request against its own configured ``sts_endpoint``, so
    the aws auth mount must point at the same regional endpoint.
    """
    if region == STS_DEFAULT_REGION:
        return STS_ENDPOINT
    return f"https://sts.{region}.amazonaws.com/"


def _b64(value):
    if isinstance(value, str):
        value = value.encode("utf-8")
    return base64.b64encode(value).decode("ascii")
