"""Sign commits with GPG or SSH.

A signer turns the canonical buffer of a commit (the commit object without
its `gpgsig` header) into a detached signature. The signature is produced by
an external program, just like Git itself does:

  * `GpgSigner` runs `gpg` (or `gpgsm` for X.509 certificates).
  * `SshSigner` runs `ssh-keygen -Y sign`.
  * `UserSigner` picks one of the above from the repository configuration
    (`gpg.format`, `user.signingkey`, etc.).

Not signing is represented by passing `None` wherever a signer is accepted.
There is no "no-op" signer: code paths which don't sign
never run any external program.
"""
import logging
import os
import shlex
import subprocess
import tempfile
from typing import List, Optional

import pygit2
from typing_extensions import Protocol

from . import get_config
from .errors import BackendError, ConfigError, NoKeyError, SignerFailedError
from .identity import Identity, SignatureResolver


class Signer(Protocol):
    """Interface for producing detached commit signatures."""

    def sign(self, buffer: bytes, identity: Identity) -> bytes:  # pragma: no cover
        """Sign the given commit buffer.

        Args:
          buffer: The canonical commit buffer, without any signature.
          identity: The identity of the committer. Signers which select a
            key based on identity use this one.

        Returns:
          The detached signature, typically ASCII-armored.

        Raises:
          SignerFailedError: The signing program failed or produced no
            signature.
          NoKeyError: No signing key could be determined.
        """
        ...


def _pipe_command(
    args: List[str], stdin: Optional[bytes]
) -> "subprocess.CompletedProcess[bytes]":
    return subprocess.run(
        args,
        input=stdin,
        stdin=None if stdin is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )


def _remove_cr(signature: str) -> str:
    # Strip CR from the line endings, in case we are on Windows.
    return "".join(line + "\n" for line in signature.splitlines())


def _literal_key(signing_key: str) -> Optional[str]:
    if signing_key.startswith("key::"):
        return signing_key[len("key::") :]
    elif signing_key.startswith("ssh-"):
        return signing_key
    else:
        return None


class GpgSigner:
    """Sign with an OpenPGP (or X.509) program compatible with `gpg`."""

    def __init__(self, program: str = "gpg", signing_key: Optional[str] = None) -> None:
        """Constructor.

        Args:
          program: The signing program to run.
          signing_key: The key to sign with. If not provided, the key is
            selected by the email of the signing identity.
        """
        self._program = program
        self._signing_key = signing_key

    def sign(self, buffer: bytes, identity: Identity) -> bytes:
        signing_key = self._signing_key or identity.email
        if not signing_key:
            raise NoKeyError("user.signingkey is not set and the committer has no email")

        args = [self._program, "--status-fd=2", "-bsau", signing_key]
        logging.debug(f"Signing commit buffer with: {' '.join(args)}")
        try:
            result = _pipe_command(args, buffer)
        except OSError as e:
            raise SignerFailedError(self._program, str(e)) from e

        if result.returncode != 0:
            raise SignerFailedError(
                self._program,
                f"exited with code {result.returncode}: "
                + result.stderr.decode(errors="replace").strip(),
            )
        if b"\n[GNUPG:] SIG_CREATED " not in b"\n" + result.stderr:
            raise SignerFailedError(self._program, "no signature was created")

        try:
            signature = result.stdout.decode()
        except UnicodeDecodeError as e:
            raise SignerFailedError(self._program, str(e)) from e
        if not signature.strip():
            raise SignerFailedError(self._program, "empty signature")
        return _remove_cr(signature).encode()


class SshSigner:
    """Sign with an SSH key using `ssh-keygen -Y sign`.

    The signing key is either a path to a key file, or a literal public key
    (prefixed with `key::`, or starting with `ssh-`), in which case the
    private key is expected to be available from an SSH agent.
    """

    def __init__(self, signing_key: str, program: str = "ssh-keygen") -> None:
        self._program = program
        self._signing_key = signing_key

    def sign(self, buffer: bytes, identity: Identity) -> bytes:
        if not self._signing_key:
            raise NoKeyError("no SSH signing key was provided")

        with tempfile.TemporaryDirectory(prefix="pygit2-ext-") as temp_dir:
            literal_key = _literal_key(self._signing_key)
            if literal_key is not None:
                key_path = os.path.join(temp_dir, "signing_key.pub")
                with open(key_path, "w") as f:
                    f.write(literal_key)
            else:
                key_path = os.path.expanduser(self._signing_key)

            buffer_path = os.path.join(temp_dir, "buffer")
            with open(buffer_path, "wb") as f:
                f.write(buffer)

            args = [
                self._program,
                "-Y",
                "sign",
                "-n",
                "git",
                "-f",
                key_path,
                buffer_path,
            ]
            logging.debug(f"Signing commit buffer with: {' '.join(args)}")
            try:
                result = _pipe_command(args, buffer)
            except OSError as e:
                raise SignerFailedError(self._program, str(e)) from e

            if result.returncode != 0:
                stderr = result.stderr.decode(errors="replace")
                if "usage:" in stderr:
                    raise SignerFailedError(
                        self._program,
                        "ssh-keygen -Y sign is needed for ssh signing "
                        "(available in openssh version 8.2p1+)",
                    )
                raise SignerFailedError(self._program, stderr.strip())

            signature_path = buffer_path + ".sig"
            try:
                with open(signature_path) as f:
                    signature = f.read()
            except (OSError, UnicodeDecodeError) as e:
                raise SignerFailedError(
                    self._program,
                    f"failed reading ssh signature from {signature_path}: {e}",
                ) from e

        if not signature.strip():
            raise SignerFailedError(self._program, "empty signature")
        return _remove_cr(signature).encode()


def _get_default_ssh_signing_key(repo: pygit2.Repository) -> Optional[str]:
    """Get the first key offered by `gpg.ssh.defaultKeyCommand`, if any."""
    command = get_config(repo, "gpg.ssh.defaultKeyCommand")
    if command is None:
        return None
    try:
        args = shlex.split(command)
    except ValueError as e:
        raise ConfigError("gpg.ssh.defaultKeyCommand", command) from e
    if not args:
        raise ConfigError("gpg.ssh.defaultKeyCommand", command)

    try:
        result = _pipe_command(args, None)
    except OSError as e:
        logging.warning(f"Failed to run gpg.ssh.defaultKeyCommand: {e}")
        return None
    try:
        keys = result.stdout.decode()
    except UnicodeDecodeError:
        return None

    lines = keys.splitlines()
    if not lines:
        return None
    default_key = lines[0]
    if _literal_key(default_key) is None:
        return None
    return default_key


class UserSigner:
    """Sign the way the user configured Git to sign."""

    def __init__(self, signer: Signer) -> None:
        self._signer = signer

    @classmethod
    def from_config(
        cls, repo: pygit2.Repository, resolver: Optional[SignatureResolver] = None
    ) -> "UserSigner":
        """Select a signer based on the repository configuration.

        Args:
          repo: The Git repository.
          resolver: Resolves the committer identity, whose email selects the
            key when `user.signingkey` is not set. Defaults to one reading
            the process environment.

        Returns:
          The signer.

        Raises:
          NoKeyError: No signing key could be resolved.
          ConfigError: `gpg.format` or `gpg.ssh.defaultKeyCommand` is invalid.
        """
        signing_format = get_config(repo, "gpg.format") or "openpgp"
        signing_key = get_config(repo, "user.signingkey")

        if signing_format == "openpgp":
            program = get_config(repo, "gpg.openpgp.program", "gpg.program") or "gpg"
            _check_identity_key(repo, signing_key, resolver)
            return cls(GpgSigner(program=program, signing_key=signing_key))
        elif signing_format == "x509":
            program = get_config(repo, "gpg.x509.program") or "gpgsm"
            _check_identity_key(repo, signing_key, resolver)
            return cls(GpgSigner(program=program, signing_key=signing_key))
        elif signing_format == "ssh":
            program = get_config(repo, "gpg.ssh.program") or "ssh-keygen"
            if signing_key is None:
                signing_key = _get_default_ssh_signing_key(repo)
            if signing_key is None:
                raise NoKeyError(
                    "either user.signingkey or gpg.ssh.defaultKeyCommand "
                    "needs to be configured"
                )
            return cls(SshSigner(program=program, signing_key=signing_key))
        else:
            raise ConfigError("gpg.format", signing_format)

    def sign(self, buffer: bytes, identity: Identity) -> bytes:
        return self._signer.sign(buffer, identity)


def _check_identity_key(
    repo: pygit2.Repository,
    signing_key: Optional[str],
    resolver: Optional[SignatureResolver],
) -> None:
    # Without `user.signingkey`, the key is looked up by the committer's
    # email at signing time, so there has to be one.
    if signing_key is not None:
        return
    if resolver is None:
        resolver = SignatureResolver(repo)
    try:
        resolver.resolve_committer()
    except BackendError as e:
        raise NoKeyError(f"user.signingkey is not set and {e}") from e


def signer_from_config(
    repo: pygit2.Repository, resolver: Optional[SignatureResolver] = None
) -> Optional[Signer]:
    """Get the signer to use if `commit.gpgsign` is enabled.

    Args:
      repo: The Git repository.
      resolver: Passed on to `UserSigner.from_config`.

    Returns:
      The configured signer, or `None` if commits should not be signed.
    """
    try:
        should_sign = repo.config.get_bool("commit.gpgsign")
    except KeyError:
        should_sign = False
    if not should_sign:
        return None
    return UserSigner.from_config(repo, resolver)
