"""Bundled TLS identity for the HTTPS server instances.

The key material is a fixed, self-signed, long-expired test credential stored
as a password-protected PKCS#12 blob. It is only good for test clients that
skip certificate verification; see :func:`client_ssl_context`.
"""

from __future__ import annotations

import base64
import logging
import os
import ssl
import tempfile
import threading
from dataclasses import dataclass
from typing import NoReturn

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .errors import TLSIdentityError

logger = logging.getLogger(__name__)

KEYSTORE_PASSWORD = b"simulator"

# RSA-2048 key + self-signed certificate, CN=Unknown, valid 2016-05-23 to 2016-08-21.
KEYSTORE_BASE64 = (
    "MIIJqgIBAzCCCWAGCSqGSIb3DQEHAaCCCVEEgglNMIIJSTCCA6IGCSqGSIb3DQEHBqCCA5Mw"
    "ggOPAgEAMIIDiAYJKoZIhvcNAQcBMFcGCSqGSIb3DQEFDTBKMCkGCSqGSIb3DQEFDDAcBAiX"
    "bp/k28JdeAICCAAwDAYIKoZIhvcNAgkFADAdBglghkgBZQMEASoEEM2BY8ylO4ikELMniynU"
    "p0SAggMgtMahWbmZZUbFWl45YqRzezmVzEPtnDPccn3Jv5afwrHwjAYMsjqhpUve7N7XrktH"
    "jC4KO0UVmS5n1RTyjDaKEzuWAejtNwpj9mrWqJLuCnVJshz4P4A8EJtJYCOxMt6e/V46l0dG"
    "8wkhOH/rOjIGIy5E9ArytH6KF9cplkO5XLBPGSUC5wMWR3AHAEwBa/JC/7ugQD04mWjNZEMA"
    "wG2FuzbdUfrL8cOFxijXM3eudq4ltIYjvr+1xcaWi2mGz0LRMVC8b4DlC0ePBxYjB14m/e2a"
    "guGf6r6ePk4xcsfLH+/5Et1YUT/yQWx7np2hWWlSwDtrb+1cxzfW23ssyJXoEr99g3S5zhF+"
    "Ng9rdMeOwjCgZwFNWE5FYwNGXFLNUtcYjylgxX9IKTHN6FkFcpHPVEuj8hXTAbsVy123h5eL"
    "lxrCS5CEZ2ZE6yBndenlmdjixJQaWCUJF6jT4Iqat/CwV7OuDpoqUbon5x17jgel9JLyXN1g"
    "a/zfjMIttFoYrEJkJeq2n5nnZ8tzQCmsd0m5/tN9NCaI7GR1IUV8D0ej+vtt1JCmfBwlVvfr"
    "bjvcxkXjLTX2xpNXYktAqK10LQt5w8U/4nIeB+N30eFt+Jba6SH05FjkPEhd4deUwI6gVj+d"
    "4jaK6aiBoPBqLMtynUofLxJhln5qvuBSYJNeA5k0GQTgqIcvD4NHp4Jw0CWsLyBIXVAG0Lc3"
    "+5bmq2tPXRm9YTiWCesQQsFKa1UCZTjey37Gh7M1liFJywnx5Cdlq5R11JKXl1mJ+Lb7XTOu"
    "17PTIfFdXVfwUUxI5dCyiVQ5tPqUHLZOsoRGgxgT6DMw6UGEkcYcK7nFhWxjD34x7k/pcKY5"
    "4xRdXECH/+4sxKG6AMgtyL4u0ohgURg2MkeueJD7S5KubB9n8rh+WFfCfEcTLGdrQFYJWDXZ"
    "Aoxc09Ve8JxPkxycDgACDxrB7rTom3fGpwPd2ua+1KWgL5yw23VYh7qwon5tBbspSLyIsyJJ"
    "kXYMFndv+5/7d77NbGMbVwWeTcZ//kI4y01n9jM8GjOU+YlraARRRVdc2lCit/KEd7IwggWf"
    "BgkqhkiG9w0BBwGgggWQBIIFjDCCBYgwggWEBgsqhkiG9w0BDAoBAqCCBTEwggUtMFcGCSqG"
    "SIb3DQEFDTBKMCkGCSqGSIb3DQEFDDAcBAiMwIuUI59WBQICCAAwDAYIKoZIhvcNAgkFADAd"
    "BglghkgBZQMEASoEEJ1tNYmwuYBrzIgtCsU84ZkEggTQzaafR4HuX7/k4YzczuvHmr2agGcM"
    "M76dUsCxcPE5yODnTKZ+z7M7Vv1dxOUew5exk6M8Y3jcApn19lbakc9dZaTWREnzwSpqnHib"
    "xPi216oARf+qKj5gTkgyKdjRaNhSHtDDP51iqUQri5fSGoWZaoHzTCe2PiUXBwc1U2ZKarcL"
    "BblwTQC/PecPPGOpWRmYdY9/XUPD3+safy+Regpvp/tgrRhq3pJgWO/Ou1SRq9VvzqaErLrd"
    "uVfgg/WzdRIkJI5jf4orebxWVsZoaWEXExL+O1gNUD8PaMAobjFkYMDd8zGlIveAtEhu1jO2"
    "lTRmQWkuyTf5hGCVDK59jrC2Y7kWvrsmQJZ7YzjA7ecHdr28zLS06f46q1F92AgirKerDITA"
    "EsmGK8+bM89FKgXT6ldX02i5S9aMoVHGCQQRa95kAn2AoiydiH5xx3AmPVQ9cKptAQgof0at"
    "t79byffh68Arq+DQ92X3y5WujbppTP8/rUVCTz/NfspB7JGgdAgOfP3eslqsKEabx41fFlHz"
    "9/jKwiwLn8RSIVyJcCQV+4O+DVcKUpFc5SnuLu9PwZuURKT8aLFp2gFqnbSS3IhkWP+jA7CX"
    "AZJWup2neBxoyQ0nZrT3fu6Gzud9LVnRqeEAbjaX1f3nBIoVsxmjVUpEaWAXwoNiu+r95wW3"
    "N5wOg5sR7PzmrB+leBRL3yzFm4dgh7yJSGXibkuZEbfGaLc1oJ+SrLhNWfkHTXovKL1nYlSD"
    "KaToeC/LYnJubR33UeDicn4O0RqipP37p3WUXYCbAM2Gh8Jlug8VvssRpqYLCejuoKBJ7Dxa"
    "uGk+05XxuYAECdBO93wZMAf758ycmX6tXTyvMdnjH8SovtygDpT2EFH+fPMbA8xCfeHgVr30"
    "T0vNyh04nREn/JvRUd+YcZII1/1IVq6JluE1KhSqL8i5VLcM5aRQDpdOQ9vxeNK8fXmxDGIn"
    "KUnjVVlUopHHVL/PFzIK3fKK3q6JgdZJnZU/WUEmTPHzGuq/ww7ezVz8X1rEonBztkvlderx"
    "/dsCq/xjBqmLUUtrTXhLaMqaIpYlLXLsmQfuKpUC2Hmvui6OWroTKNeIlHessDltZmaJhBtz"
    "cELovc4LFOBDhZT5Su9lHYQ5mmhT867B4i3eEA9f6U4/h3QXtiIauE9Ts3b0n3P0hTa1/xBT"
    "4EbLDXoEi/KYoXxQAe9eF2BlxSs6aUX4WgI5xKCtIhhDsnhIDrPsQ8NCKW9j3AWkoAWFQYjD"
    "MtEod3A+ttF/R2FHyHPbGl7rwatDIc5Af+VjTYP6Zc3AZwF1Bo8si09S8ofG7xt98RIojrYk"
    "aooLuXQZfPVLqWdzaAfW7u5qZpOLIL5uCh99ATDcvzv8yyjujG5FRTWLrvl8+i0VWSIf27qJ"
    "3/kRsYgk3eNGqtyn6DUDG8GAXCJqnUaeip9/+at6tYnVEXZkzjHAIEFLspazMYQbtL4BGaHI"
    "bi8ATuVrMlBTJ/VSKQy6NNIflf5llUnvwqEPlBOnZpdHGSqqkiFuBWmz1Kh8OZhMsNADlmk9"
    "l55sbBHE3uouGgWKdfn8/676Z4Eg8W8ksjXr+exIs5D2+VPJvPk/GUW02SverHVSKHkodBQO"
    "7k2GY8/EI/pBO1DLNjfWgQQoie2sBMAxQDAZBgkqhkiG9w0BCRQxDB4KAGEAbABpAGEAczAj"
    "BgkqhkiG9w0BCRUxFgQUIIODWCSjyVQ3w8lVCkKA44HY/NkwQTAxMA0GCWCGSAFlAwQCAQUA"
    "BCBbBFQfhhYo8/9LKDiSJD90Hs/kKztGGbXZpahWqmI+tQQIbHvdBx5QAN0CAggA"
)

_PROTOCOL_VERSIONS = (
    ssl.TLSVersion.TLSv1,
    ssl.TLSVersion.TLSv1_1,
    ssl.TLSVersion.TLSv1_2,
    ssl.TLSVersion.TLSv1_3,
)


@dataclass(frozen=True, slots=True)
class TLSIdentity:
    """Server-side TLS context plus what it was built from.

    ``cipher_suites`` and ``protocols`` report the engine defaults the
    context was left with; nothing is restricted beyond them.
    """
    context: ssl.SSLContext
    certificate: x509.Certificate
    cipher_suites: tuple[str, ...]
    protocols: tuple[str, ...]


_identity: TLSIdentity | None = None
_identity_failed = False
_identity_lock = threading.Lock()


def _enabled_protocols(context: ssl.SSLContext) -> tuple[str, ...]:
    lowest, highest = context.minimum_version, context.maximum_version
    enabled = []
    for version in _PROTOCOL_VERSIONS:
        if not getattr(ssl, f"HAS_{version.name}", False):
            continue
        if lowest is not ssl.TLSVersion.MINIMUM_SUPPORTED and version < lowest:
            continue
        if highest is not ssl.TLSVersion.MAXIMUM_SUPPORTED and version > highest:
            continue
        enabled.append(version.name)
    return tuple(enabled)


def load_identity(blob: str, password: bytes) -> TLSIdentity:
    """Build a TLS identity from a base64 PKCS#12 blob.

    Raises TLSIdentityError if the blob cannot be decoded, holds no private
    key or certificate, or is rejected by the ssl module.
    """
    try:
        data = base64.b64decode(blob, validate=True)
        key, certificate, _ = pkcs12.load_key_and_certificates(data, password)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise TLSIdentityError(f"cannot decode key store: {e}") from e
    if key is None or certificate is None:
        raise TLSIdentityError("key store must hold a private key and a certificate")

    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(password),
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.verify_mode = ssl.CERT_NONE
    # ssl only loads key material from files
    with tempfile.TemporaryDirectory(prefix="simserve-tls-") as tmp:
        cert_path = os.path.join(tmp, "cert.pem")
        key_path = os.path.join(tmp, "key.pem")
        with open(cert_path, "wb") as f:
            f.write(cert_pem)
        with open(key_path, "wb") as f:
            f.write(key_pem)
        try:
            context.load_cert_chain(certfile=cert_path, keyfile=key_path, password=password)
        except (ssl.SSLError, OSError) as e:
            raise TLSIdentityError(f"ssl rejected the key material: {e}") from e

    return TLSIdentity(
        context=context,
        certificate=certificate,
        cipher_suites=tuple(c["name"] for c in context.get_ciphers()),
        protocols=_enabled_protocols(context),
    )


def _exit_process() -> NoReturn:
    if threading.current_thread() is threading.main_thread():
        raise SystemExit(1)
    # SystemExit would only end this thread
    logging.shutdown()
    os._exit(1)


def get_identity() -> TLSIdentity:
    """Return the process-wide TLS identity, building it on first use.

    Without TLS support no HTTPS fixture can run, so a failure here is fatal:
    it is logged and the process exits, whichever thread asked first.
    """
    global _identity, _identity_failed
    with _identity_lock:
        if _identity_failed:
            _exit_process()
        if _identity is None:
            try:
                _identity = load_identity(KEYSTORE_BASE64, KEYSTORE_PASSWORD)
            except TLSIdentityError:
                _identity_failed = True
                logger.critical("Cannot initialize the bundled TLS identity", exc_info=True)
                _exit_process()
            logger.debug("TLS identity ready: %s", _identity.certificate.subject.rfc4514_string())
        return _identity


def client_ssl_context() -> ssl.SSLContext:
    """Client context that accepts the bundled (expired, self-signed) certificate."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context
