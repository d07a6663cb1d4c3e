from .vault import Credential, CredentialScope, CredentialVault

__all__ = ["Credential", "CredentialScope", "CredentialVault"]
