from .errors import ErrorKind, Result
from .models import Principal
from .service import CertificateAuthority

__all__ = ["CertificateAuthority", "ErrorKind", "Principal", "Result"]
