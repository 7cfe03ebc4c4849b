"""Minimal IMAP client for verification-code retrieval.

Only the commands needed to find a code are implemented: CAPABILITY,
STARTTLS, LOGIN, SELECT, SEARCH, FETCH and LOGOUT. Every read is bounded by a
per-response timeout, a whole attempt is bounded by the connection timeout,
and an outer fallback guard makes sure a hung server can never stall a run.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
import re
import ssl
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from automation.shared.timeouts import with_timeout
from infrastructure.credentials import CredentialStore, validate_gmail_settings
from infrastructure.settings import MailSettings
from mail.extraction import (
    VerificationCode,
    decode_body,
    extract_codes,
    format_imap_date,
    parse_date_header,
    parse_search_ids,
    parse_subject_header,
    quote_imap_string,
)

T = TypeVar("T")

_LITERAL_RE = re.compile(r"\{(\d+)\}$")
MAX_MESSAGES_PER_FETCH = 10


# ----------------------------------------------------------------------
# Errors
# ----------------------------------------------------------------------
class MailError(Exception):
    """Base class for genuine mail failures (never raised for "no code")."""


class MailConnectionError(MailError):
    pass


class MailAuthenticationError(MailError):
    pass


class MailProtocolError(MailError):
    pass


class MailTimeoutError(MailError):
    pass


@dataclass
class TaggedResponse:
    """Everything the server sent for one tagged command."""

    tag: str
    status: str
    text: str
    lines: List[str] = field(default_factory=list)
    literals: List[bytes] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "OK"


class IMAPConnection:
    """One tagged command/response session over an asyncio stream."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        use_tls: bool,
        response_timeout: float,
        ssl_context: Optional[ssl.SSLContext] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.imap_client.IMAPConnection.__init__')
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.response_timeout = response_timeout
        self.ssl_context = ssl_context
        self.logger = logger or logging.getLogger("MailClient")
        self.secure = False
        self.greeting = ""
        self.capabilities: List[str] = []
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._tag_counter = 0

    def _context(self) -> ssl.SSLContext:
        if self.ssl_context is None:
            self.ssl_context = ssl.create_default_context()
        return self.ssl_context

    def _timeout_error(self, what: str) -> Callable[[], MailTimeoutError]:
        return lambda: MailTimeoutError(
            f"{what} timed out after {self.response_timeout:.0f}s ({self.host}:{self.port})"
        )

    async def open(self) -> str:
        """Connect and consume the server greeting."""
        t('mail.imap_client.IMAPConnection.open')
        try:
            self._reader, self._writer = await with_timeout(
                asyncio.open_connection(
                    self.host,
                    self.port,
                    ssl=self._context() if self.use_tls else None,
                    server_hostname=self.host if self.use_tls else None,
                ),
                self.response_timeout,
                error_factory=self._timeout_error("Connect"),
            )
        except (OSError, ssl.SSLError) as exc:
            raise MailConnectionError(f"Cannot connect to {self.host}:{self.port}: {exc}") from exc

        self.secure = self.use_tls
        self.greeting = await self._read_line()
        self.logger.debug("IMAP greeting: %s", self.greeting)
        upper = self.greeting.upper()
        if upper.startswith("* BYE"):
            raise MailConnectionError(f"Server refused connection: {self.greeting}")
        if not (upper.startswith("* OK") or upper.startswith("* PREAUTH")):
            raise MailProtocolError(f"Unexpected greeting: {self.greeting}")
        return self.greeting

    async def starttls(self) -> None:
        """Upgrade a plaintext session in place."""
        t('mail.imap_client.IMAPConnection.starttls')
        response = await self.command("STARTTLS")
        if not response.ok:
            raise MailProtocolError(f"STARTTLS rejected: {response.text}")
        if self._writer is None:
            raise MailConnectionError("Connection is not open")
        try:
            await with_timeout(
                self._writer.start_tls(self._context(), server_hostname=self.host),
                self.response_timeout,
                error_factory=self._timeout_error("TLS upgrade"),
            )
        except (OSError, ssl.SSLError) as exc:
            raise MailConnectionError(f"TLS upgrade failed: {exc}") from exc
        self.secure = True
        self.logger.debug("🔒 Connection upgraded with STARTTLS")

    async def capability(self) -> List[str]:
        t('mail.imap_client.IMAPConnection.capability')
        response = await self.command("CAPABILITY")
        if not response.ok:
            raise MailProtocolError(f"CAPABILITY failed: {response.text}")
        caps: List[str] = []
        for line in response.lines:
            if line.upper().startswith("* CAPABILITY"):
                caps.extend(token.upper() for token in line.split()[2:])
        self.capabilities = caps
        return caps

    async def command(self, command: str, *, sensitive: bool = False) -> TaggedResponse:
        """Send one tagged command and collect the response up to its tag."""
        t('mail.imap_client.IMAPConnection.command')
        if self._writer is None:
            raise MailConnectionError("Connection is not open")

        self._tag_counter += 1
        tag = f"a{self._tag_counter:03d}"
        shown = command.split(" ", 1)[0] + " ****" if sensitive else command
        self.logger.debug("IMAP >> %s %s", tag, shown)

        try:
            self._writer.write(f"{tag} {command}\r\n".encode("utf-8"))
            await with_timeout(
                self._writer.drain(),
                self.response_timeout,
                error_factory=self._timeout_error("Send"),
            )
        except OSError as exc:
            raise MailConnectionError(f"Send failed: {exc}") from exc

        lines: List[str] = []
        literals: List[bytes] = []
        while True:
            line = await self._read_line()
            literal = _LITERAL_RE.search(line)
            if literal:
                literals.append(await self._read_exactly(int(literal.group(1))))
                lines.append(line)
                continue

            parts = line.split(" ", 2)
            if parts[0] == tag and len(parts) >= 2 and parts[1].upper() in {"OK", "NO", "BAD"}:
                status = parts[1].upper()
                text = parts[2] if len(parts) > 2 else ""
                self.logger.debug("IMAP << %s %s", tag, status)
                return TaggedResponse(tag, status, text, lines, literals)
            lines.append(line)

    async def close(self) -> None:
        t('mail.imap_client.IMAPConnection.close')
        writer, self._writer = self._writer, None
        if writer is None:
            return
        try:
            writer.write(f"a{self._tag_counter + 1:03d} LOGOUT\r\n".encode("utf-8"))
            writer.close()
            await with_timeout(writer.wait_closed(), 1.0)
        except (OSError, asyncio.TimeoutError, ssl.SSLError) as exc:
            self.logger.debug("Ignoring close error: %s", exc)

    async def _read_line(self) -> str:
        if self._reader is None:
            raise MailConnectionError("Connection is not open")
        try:
            raw = await with_timeout(
                self._reader.readline(),
                self.response_timeout,
                error_factory=self._timeout_error("Response"),
            )
        except OSError as exc:
            raise MailConnectionError(f"Read failed: {exc}") from exc
        if not raw:
            raise MailConnectionError("Connection closed by server")
        return raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def _read_exactly(self, size: int) -> bytes:
        if self._reader is None:
            raise MailConnectionError("Connection is not open")
        try:
            return await with_timeout(
                self._reader.readexactly(size),
                self.response_timeout,
                error_factory=self._timeout_error("Literal read"),
            )
        except asyncio.IncompleteReadError as exc:
            raise MailConnectionError("Connection closed mid-literal") from exc


class MailClient:
    """Fetch verification codes from the configured inbox."""

    def __init__(
        self,
        settings: MailSettings,
        credentials: CredentialStore,
        *,
        ssl_context: Optional[ssl.SSLContext] = None,
        allow_insecure: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.imap_client.MailClient.__init__')
        self.settings = settings
        self.credentials = credentials
        self.ssl_context = ssl_context
        self.allow_insecure = allow_insecure
        self.clock = clock
        self.logger = logger or logging.getLogger("MailClient")
        self._rate_lock = asyncio.Lock()
        self._last_attempt: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def fetch_codes(self, since: datetime) -> List[VerificationCode]:
        """Codes from messages newer than ``since``; empty when none match."""
        t('mail.imap_client.MailClient.fetch_codes')
        effective_since = self.effective_since(since)
        return await self._guarded(self._fetch_codes(effective_since), "Code fetch")

    async def check_connection(self) -> str:
        """Log in, select the inbox, and report the newest subject."""
        t('mail.imap_client.MailClient.check_connection')
        return await self._guarded(self._check_connection(), "Connection test")

    def effective_since(self, since: datetime) -> datetime:
        """Clamp ``since`` so it is never older than the lookback window."""
        t('mail.imap_client.MailClient.effective_since')
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        floor = self.clock() - timedelta(seconds=self.settings.lookback_seconds)
        return max(since, floor)

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    async def _guarded(self, operation: Awaitable[T], label: str) -> T:
        connection_timeout = self.settings.connection_timeout
        fallback_timeout = max(self.settings.fallback_timeout, connection_timeout)

        async def _attempt() -> T:
            return await with_timeout(
                operation,
                connection_timeout,
                error_factory=lambda: MailTimeoutError(
                    f"{label} timed out after {connection_timeout:.0f}s"
                ),
            )

        return await with_timeout(
            _attempt(),
            fallback_timeout,
            error_factory=lambda: MailTimeoutError(
                f"{label} did not resolve within {fallback_timeout:.0f}s"
            ),
        )

    async def _respect_rate_limit(self) -> None:
        async with self._rate_lock:
            now = time.monotonic()
            if self._last_attempt is not None:
                wait = self.settings.min_connection_interval - (now - self._last_attempt)
                if wait > 0:
                    self.logger.debug("⏳ Rate limiting IMAP connection for %.1fs", wait)
                    await asyncio.sleep(wait)
            self._last_attempt = time.monotonic()

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------
    def _password(self) -> str:
        password = self.credentials.get_secret(self.settings.password_ref)
        if not password:
            raise MailAuthenticationError("No IMAP password available for the configured reference")
        problems = validate_gmail_settings(self.settings.email, self.settings.server, password)
        if problems:
            raise MailAuthenticationError("; ".join(problems))
        return password

    async def _connect(self) -> IMAPConnection:
        await self._respect_rate_limit()
        attempts: List[Tuple[int, bool]] = [(self.settings.port, self.settings.use_tls)]
        if self.settings.fallback_port and self.settings.fallback_port != self.settings.port:
            attempts.append((self.settings.fallback_port, False))

        last_error: Optional[MailError] = None
        for port, use_tls in attempts:
            connection = IMAPConnection(
                self.settings.server,
                port,
                use_tls=use_tls,
                response_timeout=self.settings.response_timeout,
                ssl_context=self.ssl_context,
                logger=self.logger,
            )
            try:
                await connection.open()
                return connection
            except (MailConnectionError, MailTimeoutError) as exc:
                last_error = exc
                await connection.close()
                self.logger.warning("⚠️ IMAP connect to port %s failed: %s", port, exc)
            except BaseException:
                await connection.close()
                raise
        if last_error is None:
            raise MailConnectionError(f"No IMAP port configured for {self.settings.server}")
        raise last_error

    async def _open_session(self) -> IMAPConnection:
        password = self._password()
        connection = await self._connect()
        try:
            if not connection.secure and "STARTTLS" in connection.greeting.upper():
                await connection.starttls()
            capabilities = await connection.capability()
            if not connection.secure and "STARTTLS" in capabilities:
                await connection.starttls()
                await connection.capability()
            if not connection.secure and not self.allow_insecure:
                raise MailConnectionError(
                    "Refusing to send credentials over an unencrypted connection"
                )

            login = await connection.command(
                f"LOGIN {quote_imap_string(self.settings.email)} {quote_imap_string(password)}",
                sensitive=True,
            )
            if login.status == "NO":
                raise MailAuthenticationError(f"Login rejected: {login.text}")
            if login.status == "BAD":
                raise MailProtocolError(f"Malformed login: {login.text}")

            selected = await connection.command("SELECT INBOX")
            if not selected.ok:
                raise MailProtocolError(f"SELECT INBOX failed: {selected.text}")
            return connection
        except BaseException:
            await connection.close()
            raise

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def _search_strategies(self, since: datetime) -> List[Tuple[str, str]]:
        date = format_imap_date(since)
        sender = quote_imap_string(self.settings.sender)
        return [
            ("sender+subject", f"SEARCH SINCE {date} FROM {sender} SUBJECT {quote_imap_string(self.settings.subject)}"),
            ("sender", f"SEARCH SINCE {date} FROM {sender}"),
            ("keyword", f"SEARCH SINCE {date} SUBJECT {quote_imap_string(self.settings.subject_keyword)}"),
        ]

    async def _search(self, connection: IMAPConnection, since: datetime) -> List[int]:
        for name, command in self._search_strategies(since):
            response = await connection.command(command)
            if not response.ok:
                raise MailProtocolError(f"SEARCH failed: {response.text}")
            ids = parse_search_ids(response.lines)
            if ids:
                self.logger.info("📬 Search strategy %s matched %s message(s)", name, len(ids))
                return ids
            self.logger.debug("Search strategy %s matched nothing", name)
        return []

    async def _fetch_codes(self, since: datetime) -> List[VerificationCode]:
        connection = await self._open_session()
        try:
            ids = await self._search(connection, since)
            if not ids:
                self.logger.info("📭 No verification emails since %s", since.isoformat())
                return []

            found: Dict[str, VerificationCode] = {}
            for message_id in sorted(ids, reverse=True)[:MAX_MESSAGES_PER_FETCH]:
                header = await connection.command(
                    f"FETCH {message_id} (BODY.PEEK[HEADER.FIELDS (DATE)])"
                )
                if not header.ok:
                    raise MailProtocolError(f"FETCH header failed: {header.text}")
                header_text = b"".join(header.literals).decode("utf-8", errors="replace")
                sent_at = parse_date_header(header_text)
                if sent_at is not None and sent_at < since:
                    self.logger.debug("Skipping message %s sent at %s", message_id, sent_at)
                    continue

                body = await connection.command(f"FETCH {message_id} (BODY.PEEK[TEXT])")
                if not body.ok:
                    raise MailProtocolError(f"FETCH body failed: {body.text}")
                text = decode_body(b"".join(body.literals))
                discovered_at = sent_at or self.clock()
                for value in extract_codes(text):
                    existing = found.get(value)
                    if existing is None or existing.discovered_at < discovered_at:
                        found[value] = VerificationCode(value, discovered_at)

            codes = [found[value] for value in sorted(found)]
            self.logger.info("🔑 Extracted %s verification code(s)", len(codes))
            return codes
        finally:
            await connection.close()

    async def _check_connection(self) -> str:
        connection = await self._open_session()
        try:
            search = await connection.command("SEARCH ALL")
            ids = parse_search_ids(search.lines) if search.ok else []
            if not ids:
                return "IMAP connection successful! Inbox is empty."
            latest = max(ids)
            header = await connection.command(
                f"FETCH {latest} (BODY.PEEK[HEADER.FIELDS (SUBJECT)])"
            )
            subject = None
            if header.ok:
                subject = parse_subject_header(
                    b"".join(header.literals).decode("utf-8", errors="replace")
                )
            return f"IMAP connection successful! Latest email: {subject or '(no subject)'}"
        finally:
            await connection.close()
