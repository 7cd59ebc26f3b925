"""Decorators that hand vault secret fields to the functions they wrap"""


def _secret_data(session, path):
    secret = session.get_secret(path).data
    # kv version 2 nests the payload one level further down
    if isinstance(secret.get("data"), dict) and "metadata" in secret:
        secret = secret["data"]
    return secret


class InjectSecretValue:
    """Passes one field of a vault secret as the first positional argument.

    The secret is read once, when the decorator is applied, so the session
    must already be authenticated at that point.

    :type session: vault_cloudauth.VaultSession
    :param session: authenticated session used for the read

    :type path: str
    :param path: secret path, e.g. ``secret/data/app`` or ``database/creds/app``

    :type key: str
    :param key: field of the secret data to pass
    """

    def __init__(self, session, path, key):
        self.session = session
        self.path = path
        self.key = key

    def __call__(self, func):
        secret = _secret_data(self.session, self.path)
        try:
            value = secret[self.key]
        except KeyError:
            raise RuntimeError(f"Secret {self.path} has no field {self.key}") from None

        def _with_secret(*args, **kwargs):
            return func(value, *args, **kwargs)

        return _with_secret


class InjectKeywordedSecret:
    """Passes fields of a vault secret as keyword arguments.

    ``kwargs`` maps the wrapped function's parameter names to secret fields,
    e.g. ``InjectKeywordedSecret(session, "database/creds/app", user="username")``.
    """

    def __init__(self, session, path, **kwargs):
        self.session = session
        self.path = path
        self.field_map = kwargs

    def __call__(self, func):
        secret = _secret_data(self.session, self.path)

        resolved = {}
        for parameter, secret_field in self.field_map.items():
            if secret_field not in secret:
                raise RuntimeError(f"Secret {self.path} has no field {secret_field}")
            resolved[parameter] = secret[secret_field]

        def _with_secrets(*args, **kwargs):
            return func(*args, **resolved, **kwargs)

        return _with_secrets
