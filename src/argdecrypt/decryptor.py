"""
Decryption of encrypted command-line arguments.

Two decryptors exist: ReaperDecryptor calls out to the reaper service to
resolve encrypted spans, NoopDecryptor passes arguments through. Which one
is active is decided once, at startup, by select_decryptor().
"""

import json
import logging
import time
from typing import Optional, Protocol, Sequence

import requests

from .auth import bearer_header
from .config import DecryptorConfig, RetryPolicy
from .errors import (
    DeadlineExceeded,
    MarshalError,
    ProtocolError,
    ServiceError,
    TransportError,
)
from .markers import has_encrypted_arguments

logger = logging.getLogger(__name__)

DECRYPT_PATH = "/runner/decrypt_arguments"


class Decryptor(Protocol):
    def decrypt_arguments(self, args: Sequence[str], deadline: Optional[float] = None) -> Sequence[str]:
        ...

    def close(self) -> None:
        ...


class NoopDecryptor:
    """Returns arguments untouched. Used outside a cloud runner."""

    def decrypt_arguments(self, args: Sequence[str], deadline: Optional[float] = None) -> Sequence[str]:
        return args

    def close(self) -> None:
        pass


def is_retryable_status(status: int) -> bool:
    """5xx and 429 are worth another attempt; any other 4xx is final."""
    return status >= 500 or status == 429


def _retry_after(response: requests.Response) -> Optional[float]:
    if response.status_code not in (429, 503):
        return None
    value = response.headers.get("Retry-After", "")
    try:
        seconds = int(value)
    except ValueError:
        return None
    return float(seconds) if seconds >= 0 else None


def _check_arguments(args: Sequence[str]) -> None:
    for arg in args:
        if not isinstance(arg, str):
            raise MarshalError(f"error creating payload to send for decryption: argument {arg!r} is not a string")


class ReaperDecryptor:
    """
    Calls out to the reaper service to decrypt arguments.

    The whole argument list is sent, tagged with the command executor id,
    and the service answers with the same list where every encrypted span
    has been replaced:

        {"data": {"arguments": ["--arg1=zzz", "--arg2=bbb"]}}

    Requests are authorized with a freshly signed nonce per attempt (see
    auth.sign). The session is reused across retries.
    """

    _sleep = staticmethod(time.sleep)

    def __init__(
        self,
        base_url: str,
        secret: str,
        executor_id: str,
        retry: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.executor_id = executor_id
        self.retry = retry or RetryPolicy()
        self.session = session or requests.Session()

    def __repr__(self):
        return f"ReaperDecryptor(base_url={self.base_url!r}, executor_id={self.executor_id!r})"

    @classmethod
    def from_config(cls, config: DecryptorConfig, session: Optional[requests.Session] = None) -> "ReaperDecryptor":
        return cls(config.base_url, config.secret, config.executor_id, retry=config.retry, session=session)

    @property
    def url(self) -> str:
        return f"{self.base_url}{DECRYPT_PATH}"

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self.session.close()

    def decrypt_arguments(self, args: Sequence[str], deadline: Optional[float] = None) -> Sequence[str]:
        """
        Replace encrypted arguments with their decrypted values.

        Returns args itself when nothing is encrypted, without touching the
        network. Otherwise returns the full list from the service, or raises
        a DecryptionError; the caller must not fall back to the original
        arguments in that case.

        deadline is a time budget in seconds for the whole call, retries
        included. It overrides the policy's deadline.
        """
        _check_arguments(args)

        if not has_encrypted_arguments(args):
            logger.debug("No encrypted arguments found, skipping decryption")
            return args

        body = self._marshal(args)
        content = self._send(body, deadline)
        return self._unmarshal(content, len(args))

    def _marshal(self, args: Sequence[str]) -> bytes:
        payload = {
            "commandExecutorId": self.executor_id,
            "arguments": list(args),
        }
        try:
            return json.dumps(payload).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise MarshalError(f"error creating payload to send for decryption: {e}")

    def _send(self, body: bytes, deadline: Optional[float]) -> bytes:
        policy = self.retry
        budget = deadline if deadline is not None else policy.deadline
        expires = time.monotonic() + budget if budget is not None else None

        attempt = 0
        while True:
            timeout = policy.request_timeout
            if expires is not None:
                remaining = expires - time.monotonic()
                if remaining <= 0:
                    raise DeadlineExceeded("deadline exceeded before decryption service responded")
                timeout = min(timeout, remaining)

            headers = {"Content-Type": "application/json"}
            headers.update(bearer_header(self.secret))

            status = None
            retry_after = None
            logger.debug("POST %s (attempt %d)", self.url, attempt + 1)
            try:
                response = self.session.post(self.url, data=body, headers=headers, timeout=timeout, stream=True)
                try:
                    # Always drain so the connection can be reused
                    content = self._read_body(response, expires)
                finally:
                    response.close()
            except (requests.exceptions.MissingSchema,
                    requests.exceptions.InvalidSchema,
                    requests.exceptions.InvalidURL) as e:
                raise MarshalError(f"error building request to send for decryption: {e}")
            except requests.RequestException as e:
                error = e
                reason = f"transport error: {e}"
            else:
                status = response.status_code
                retry_after = _retry_after(response)

                if status < 400:
                    return content

                text = content.decode("utf-8", errors="replace")
                if not is_retryable_status(status):
                    raise ServiceError(status, text)
                error = ServiceError(status, text)
                reason = f"status code {status}"

            if attempt >= policy.max_retries:
                if status is not None:
                    raise error
                raise TransportError(
                    f"error response from decryption service: giving up after {attempt + 1} attempt(s): {error}"
                ) from error

            wait = policy.backoff(attempt, retry_after)
            if expires is not None and time.monotonic() + wait >= expires:
                raise DeadlineExceeded(
                    f"deadline exceeded after {attempt + 1} attempt(s), last failure: {reason}"
                ) from error

            logger.warning(
                "Decryption request failed (%s), retrying in %.1fs (%d retries left)",
                reason, wait, policy.max_retries - attempt,
            )
            self._sleep(wait)
            attempt += 1

    def _read_body(self, response: requests.Response, expires: Optional[float]) -> bytes:
        if expires is None:
            return response.content

        # Deadline is checked between single-byte reads
        chunks = []
        if time.monotonic() >= expires:
            raise DeadlineExceeded("deadline exceeded waiting for response from decryption service")
        for chunk in response.iter_content(chunk_size=1):
            if time.monotonic() >= expires:
                raise DeadlineExceeded("deadline exceeded while reading response from decryption service")
            chunks.append(chunk)
        return b"".join(chunks)

    def _unmarshal(self, content: bytes, expected: int) -> list[str]:
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ProtocolError(f"error parsing response from decryption service: {e}")

        try:
            arguments = data["data"]["arguments"]
        except (KeyError, TypeError):
            raise ProtocolError("response from decryption service is missing data.arguments")

        if not isinstance(arguments, list) or not all(isinstance(a, str) for a in arguments):
            raise ProtocolError("data.arguments from decryption service is not a list of strings")

        if len(arguments) != expected:
            raise ProtocolError(
                f"decryption service returned {len(arguments)} arguments, expected {expected}"
            )

        return arguments


def select_decryptor(config: Optional[DecryptorConfig] = None) -> Decryptor:
    """
    Pick the decryptor for this process.

    Remote decryption is used only inside a cloud runner with the reaper
    URL, auth token and command executor id all set; anything less falls
    back to the no-op decryptor so local runs are never blocked.
    """
    config = config or DecryptorConfig.from_env()

    if config.is_complete:
        logger.debug("Using reaper decryptor at %s", config.base_url)
        return ReaperDecryptor.from_config(config)

    logger.debug("Remote decryption not configured (missing: %s)", ", ".join(config.missing()))
    return NoopDecryptor()
