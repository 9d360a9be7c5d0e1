"""
Salted Challenge Response Authentication Mechanism (SCRAM) client.

The exchange is split into three pieces that can be tested on their own:

- HashGenerator picks the hash function and builds clients for it.
- ScramClient holds the credentials and derives keys from a salt.
- ClientConversation is the transcript of one exchange and walks the
  client-first / server-first / client-final / server-final rounds.

ScramAuthenticator composes them behind begin/step/done, which is the
surface the broker connection drives. Messages follow RFC 5802; the
password never leaves the process, only a proof derived from it.
"""

import base64
import hashlib
import hmac
import secrets
from enum import Enum
from typing import Callable

from analytics_pipeline.core.errors import AuthInitError, AuthProtocolError

CLIENT_KEY = b"Client Key"
SERVER_KEY = b"Server Key"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _saslname(name: str) -> str:
    return name.replace("=", "=3D").replace(",", "=2C")


def _parse_attributes(message: str) -> dict[str, str]:
    """Split 'a=1,b=2' into a dict, rejecting anything that is not key=value"""
    attributes = {}
    for part in message.split(","):
        if len(part) < 2 or part[1] != "=":
            raise AuthProtocolError(f"Malformed SCRAM attribute: {part!r}")
        attributes[part[0]] = part[2:]
    return attributes


def _default_nonce() -> str:
    return secrets.token_urlsafe(24)


class HashGenerator:
    """Chooses the hash function used for key derivation, HMAC and digests."""

    def __init__(self, name: str):
        self.name = name

    def new(self, data: bytes = b""):
        try:
            return hashlib.new(self.name, data)
        except (ValueError, TypeError) as e:
            raise AuthInitError(f"Hash function {self.name!r} is not available", cause=e) from e

    def digest(self, data: bytes) -> bytes:
        return self.new(data).digest()

    def hmac(self, key: bytes, message: bytes) -> bytes:
        return hmac.new(key, message, self.name).digest()

    def pbkdf2(self, password: bytes, salt: bytes, iterations: int) -> bytes:
        return hashlib.pbkdf2_hmac(self.name, password, salt, iterations)

    def new_client(
            self,
            username: str,
            password: str,
            authzid: str = "",
            nonce_factory: Callable[[], str] = _default_nonce
    ) -> "ScramClient":
        # Fail here rather than mid-exchange if the primitive is missing
        self.new()
        return ScramClient(self, username, password, authzid, nonce_factory)


SHA256 = HashGenerator("sha256")


class ScramClient:
    """Credentials plus the key derivation for one hash function."""

    def __init__(
            self,
            hash_generator: HashGenerator,
            username: str,
            password: str,
            authzid: str = "",
            nonce_factory: Callable[[], str] = _default_nonce
    ):
        if not username:
            raise AuthInitError("SCRAM username is empty")
        if password is None:
            raise AuthInitError("SCRAM password is not set")

        self.hash = hash_generator
        self.username = username
        self.authzid = authzid
        self._password = password.encode("utf-8")
        self._nonce_factory = nonce_factory

    def gs2_header(self) -> str:
        authz = f"a={_saslname(self.authzid)}" if self.authzid else ""
        return f"n,{authz},"

    def new_nonce(self) -> str:
        return self._nonce_factory()

    def derive_keys(self, salt: bytes, iterations: int) -> tuple[bytes, bytes, bytes]:
        """Return (client_key, stored_key, server_key) for the given salt"""
        salted = self.hash.pbkdf2(self._password, salt, iterations)
        client_key = self.hash.hmac(salted, CLIENT_KEY)
        stored_key = self.hash.digest(client_key)
        server_key = self.hash.hmac(salted, SERVER_KEY)
        return client_key, stored_key, server_key

    def new_conversation(self) -> "ClientConversation":
        return ClientConversation(self)


class ConversationState(Enum):
    CLIENT_FIRST = "client_first"
    SERVER_FIRST = "server_first"
    SERVER_FINAL = "server_final"
    DONE = "done"
    FAILED = "failed"


class ClientConversation:
    """
    Transcript of a single exchange.

    Each call to step() consumes the server's latest message (empty for
    the opening round) and returns the next client message. Any defect
    moves the conversation to FAILED; it cannot be resumed.
    """

    def __init__(self, client: ScramClient):
        self.client = client
        self.state = ConversationState.CLIENT_FIRST
        self._nonce = ""
        self._client_first_bare = ""
        self._server_signature = b""

    def done(self) -> bool:
        return self.state is ConversationState.DONE

    def step(self, challenge: str) -> str:
        try:
            if self.state is ConversationState.CLIENT_FIRST:
                return self._client_first()
            if self.state is ConversationState.SERVER_FIRST:
                return self._client_final(challenge)
            if self.state is ConversationState.SERVER_FINAL:
                return self._verify_server_final(challenge)
        except AuthProtocolError:
            self.state = ConversationState.FAILED
            raise
        raise AuthProtocolError(f"Conversation cannot step from state {self.state.value}")

    def _client_first(self) -> str:
        self._nonce = self.client.new_nonce()
        self._client_first_bare = f"n={_saslname(self.client.username)},r={self._nonce}"
        self.state = ConversationState.SERVER_FIRST
        return self.client.gs2_header() + self._client_first_bare

    def _client_final(self, server_first: str) -> str:
        attributes = _parse_attributes(server_first)
        if "m" in attributes:
            raise AuthProtocolError("Server requires an unsupported SCRAM extension")
        if "e" in attributes:
            raise AuthProtocolError(f"Server rejected client-first message: {attributes['e']}")

        try:
            nonce = attributes["r"]
            salt = base64.b64decode(attributes["s"], validate=True)
            iterations = int(attributes["i"])
        except KeyError as e:
            raise AuthProtocolError(f"Server-first message is missing {e.args[0]!r}") from e
        except ValueError as e:
            raise AuthProtocolError("Server-first message has an invalid salt or iteration count") from e

        if not nonce.startswith(self._nonce) or nonce == self._nonce:
            raise AuthProtocolError("Server nonce does not extend the client nonce")
        if iterations < 1:
            raise AuthProtocolError(f"Invalid iteration count {iterations}")

        channel_binding = _b64(self.client.gs2_header().encode("utf-8"))
        without_proof = f"c={channel_binding},r={nonce}"
        auth_message = ",".join([self._client_first_bare, server_first, without_proof]).encode("utf-8")

        client_key, stored_key, server_key = self.client.derive_keys(salt, iterations)
        client_signature = self.client.hash.hmac(stored_key, auth_message)
        proof = bytes(k ^ s for k, s in zip(client_key, client_signature))
        self._server_signature = self.client.hash.hmac(server_key, auth_message)

        self.state = ConversationState.SERVER_FINAL
        return f"{without_proof},p={_b64(proof)}"

    def _verify_server_final(self, server_final: str) -> str:
        attributes = _parse_attributes(server_final)
        if "e" in attributes:
            raise AuthProtocolError(f"Server rejected the client proof: {attributes['e']}")
        if "v" not in attributes:
            raise AuthProtocolError("Server-final message carries no verifier")

        try:
            verifier = base64.b64decode(attributes["v"], validate=True)
        except ValueError as e:
            raise AuthProtocolError("Server verifier is not valid base64") from e

        if not hmac.compare_digest(verifier, self._server_signature):
            raise AuthProtocolError("Server signature does not match")

        self.state = ConversationState.DONE
        return ""


class ScramAuthenticator:
    """begin/step/done over a fresh conversation per connection attempt"""

    def __init__(self, hash_generator: HashGenerator = SHA256, nonce_factory: Callable[[], str] = _default_nonce):
        self.hash_generator = hash_generator
        self.nonce_factory = nonce_factory
        self.client: ScramClient | None = None
        self.conversation: ClientConversation | None = None

    def begin(self, username: str, password: str, authzid: str = "") -> None:
        self.client = self.hash_generator.new_client(username, password, authzid, self.nonce_factory)
        self.conversation = self.client.new_conversation()

    def step(self, challenge: str) -> str:
        if self.conversation is None:
            raise AuthProtocolError("step() called before begin()")
        return self.conversation.step(challenge)

    def done(self) -> bool:
        return self.conversation is not None and self.conversation.done()
