import datetime
import ipaddress
import logging
import os
import re

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger("ProxyCore")

CA_NAME = "Mock Tool Local CA"


def _new_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _key_pem(key):
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _san(host):
    try:
        return x509.IPAddress(ipaddress.ip_address(host))
    except ValueError:
        return x509.DNSName(host)


class CertManager:
    """Local CA that signs a leaf certificate per intercepted HTTPS host.

    Clients must trust ca_cert_path for mocked HTTPS responses to verify.
    """

    def __init__(self, cert_dir="certs"):
        self.cert_dir = cert_dir
        os.makedirs(cert_dir, exist_ok=True)
        self.ca_key_path = os.path.join(cert_dir, "ca.key")
        self.ca_cert_path = os.path.join(cert_dir, "ca.crt")
        self.cert_cache = {}
        self.load_or_create_ca()

    def load_or_create_ca(self):
        if os.path.exists(self.ca_key_path) and os.path.exists(self.ca_cert_path):
            with open(self.ca_key_path, "rb") as f:
                self.ca_key = serialization.load_pem_private_key(f.read(), password=None)
            with open(self.ca_cert_path, "rb") as f:
                self.ca_cert = x509.load_pem_x509_certificate(f.read())
            return

        self.ca_key = _new_key()
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, CA_NAME),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "mock-tool"),
        ])
        public_key = self.ca_key.public_key()
        builder = self._builder(name, name, public_key, days=3650).add_extension(
            x509.BasicConstraints(ca=True, path_length=None), critical=True,
        ).add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ),
            critical=True,
        ).add_extension(
            x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False,
        )
        self.ca_cert = builder.sign(self.ca_key, hashes.SHA256())
        self._write(self.ca_key_path, _key_pem(self.ca_key))
        self._write(self.ca_cert_path, self.ca_cert.public_bytes(serialization.Encoding.PEM))
        logger.info(f"Created local CA at {self.ca_cert_path}")

    def get_certificate(self, host):
        """Return (cert_path, key_path) for host, issuing them on first use"""
        if host in self.cert_cache:
            return self.cert_cache[host]

        key = _new_key()
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)])
        cert = self._builder(subject, self.ca_cert.subject, key.public_key(), days=365).add_extension(
            x509.SubjectAlternativeName([_san(host)]), critical=False,
        ).add_extension(
            x509.BasicConstraints(ca=False, path_length=None), critical=True,
        ).add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False,
        ).add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(self.ca_key.public_key()), critical=False,
        ).sign(self.ca_key, hashes.SHA256())

        stem = re.sub(r"[^\w.-]", "_", host)
        cert_path = os.path.join(self.cert_dir, f"{stem}.crt")
        key_path = os.path.join(self.cert_dir, f"{stem}.key")
        self._write(cert_path, cert.public_bytes(serialization.Encoding.PEM))
        self._write(key_path, _key_pem(key))

        self.cert_cache[host] = (cert_path, key_path)
        return cert_path, key_path

    @staticmethod
    def _builder(subject, issuer, public_key, days):
        now = datetime.datetime.now(datetime.timezone.utc)
        return x509.CertificateBuilder().subject_name(
            subject
        ).issuer_name(
            issuer
        ).public_key(
            public_key
        ).serial_number(
            x509.random_serial_number()
        ).not_valid_before(
            now - datetime.timedelta(minutes=5)
        ).not_valid_after(
            now + datetime.timedelta(days=days)
        )

    @staticmethod
    def _write(path, data):
        with open(path, "wb") as f:
            f.write(data)
