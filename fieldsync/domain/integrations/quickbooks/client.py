"""
QuickBooks Online API client
OAuth token handling, connection persistence and the REST calls used by the sync
"""

import asyncio
import base64
import logging
import secrets
import uuid
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.orm import Session, object_session

from ....config import (
    QUICKBOOKS_API_BASE_URL,
    QUICKBOOKS_AUTH_URL,
    QUICKBOOKS_CLIENT_ID,
    QUICKBOOKS_CLIENT_SECRET,
    QUICKBOOKS_HTTP_TIMEOUT,
    QUICKBOOKS_MAX_RETRIES,
    QUICKBOOKS_MINOR_VERSION,
    QUICKBOOKS_PAGE_SIZE,
    QUICKBOOKS_REDIRECT_URI,
    QUICKBOOKS_RETRY_BACKOFF,
    QUICKBOOKS_REVOKE_URL,
    QUICKBOOKS_SCOPE,
    QUICKBOOKS_TOKEN_URL,
)
from ....models_quickbooks import QuickBooksConnection
from ....security_utils import decrypt_token, encrypt_token
from .exceptions import QuickBooksAPIError, QuickBooksAuthError, QuickBooksNotConfiguredError
from .schemas import QuickBooksTokens

logger = logging.getLogger(__name__)

# Refresh tokens this long before they actually expire
TOKEN_REFRESH_SKEW = timedelta(minutes=5)


class QuickBooksClient:
    """Async client for the QuickBooks Online accounting API"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: int = QUICKBOOKS_MAX_RETRIES,
        retry_backoff: float = QUICKBOOKS_RETRY_BACKOFF,
        page_size: int = QUICKBOOKS_PAGE_SIZE,
        timeout: float = QUICKBOOKS_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id or QUICKBOOKS_CLIENT_ID
        self.client_secret = client_secret or QUICKBOOKS_CLIENT_SECRET
        self.redirect_uri = redirect_uri or QUICKBOOKS_REDIRECT_URI
        self.base_url = base_url or QUICKBOOKS_API_BASE_URL
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.page_size = page_size
        self.timeout = timeout
        self._transport = transport

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _require_credentials(self) -> None:
        if not self.client_id or not self.client_secret:
            raise QuickBooksNotConfiguredError("QuickBooks not configured")

    def _basic_auth_header(self) -> str:
        credentials = f"{self.client_id}:{self.client_secret}"
        return base64.b64encode(credentials.encode()).decode()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: Optional[str] = None) -> str:
        """Build the Intuit OAuth 2.0 consent URL"""
        self._require_credentials()
        params = {
            "client_id": self.client_id,
            "scope": QUICKBOOKS_SCOPE,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "access_type": "offline",
            "state": state or secrets.token_urlsafe(32),
        }
        return f"{QUICKBOOKS_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, data: dict) -> dict:
        self._require_credentials()
        async with self._http() as client:
            response = await client.post(
                QUICKBOOKS_TOKEN_URL,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Authorization": f"Basic {self._basic_auth_header()}",
                },
                data=data,
            )

        if response.status_code != 200:
            logger.error(f"❌ QuickBooks token request failed: {response.status_code} {response.text}")
            raise QuickBooksAuthError(
                f"Token request ({data.get('grant_type')}) failed: {response.status_code} {response.text}"
            )
        return response.json()

    async def exchange_code_for_tokens(self, code: str, realm_id: str) -> QuickBooksTokens:
        """Exchange an authorization code for access/refresh tokens"""
        token_data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )
        return QuickBooksTokens(
            access_token=token_data["access_token"],
            refresh_token=token_data["refresh_token"],
            realm_id=realm_id,
            expires_at=datetime.utcnow() + timedelta(seconds=token_data.get("expires_in", 3600)),
        )

    async def refresh_tokens(self, refresh_token: str) -> QuickBooksTokens:
        """Refresh the access token"""
        token_data = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        return QuickBooksTokens(
            access_token=token_data["access_token"],
            # Some responses don't rotate the refresh token
            refresh_token=token_data.get("refresh_token") or refresh_token,
            expires_at=datetime.utcnow() + timedelta(seconds=token_data.get("expires_in", 3600)),
        )

    async def ensure_fresh_token(self, connection: QuickBooksConnection) -> str:
        """Return a valid access token, refreshing and persisting it when close to expiry"""
        if connection.token_expires_at > datetime.utcnow() + TOKEN_REFRESH_SKEW:
            return decrypt_token(connection.access_token)

        logger.info(f"🔄 Refreshing QuickBooks token for realm {connection.realm_id}")
        tokens = await self.refresh_tokens(decrypt_token(connection.refresh_token))

        connection.access_token = encrypt_token(tokens.access_token)
        connection.refresh_token = encrypt_token(tokens.refresh_token)
        connection.token_expires_at = tokens.expires_at
        connection.updated_at = datetime.utcnow()

        db = object_session(connection)
        if db is not None:
            db.commit()

        return tokens.access_token

    # ------------------------------------------------------------------
    # Connection persistence
    # ------------------------------------------------------------------

    def save_connection(self, db: Session, tokens: QuickBooksTokens) -> QuickBooksConnection:
        """Store or update the connection for a realm (realm id doubles as company id)"""
        connection = (
            db.query(QuickBooksConnection)
            .filter(QuickBooksConnection.company_id == tokens.realm_id)
            .first()
        )

        if connection:
            connection.access_token = encrypt_token(tokens.access_token)
            connection.refresh_token = encrypt_token(tokens.refresh_token)
            connection.token_expires_at = tokens.expires_at
            connection.is_active = True
            connection.updated_at = datetime.utcnow()
        else:
            connection = QuickBooksConnection(
                company_id=tokens.realm_id,
                realm_id=tokens.realm_id,
                access_token=encrypt_token(tokens.access_token),
                refresh_token=encrypt_token(tokens.refresh_token),
                token_expires_at=tokens.expires_at,
                base_url=self.base_url,
                is_active=True,
                updated_at=datetime.utcnow(),
            )
            db.add(connection)

        db.commit()
        db.refresh(connection)
        logger.info(f"✅ QuickBooks connection saved for realm {tokens.realm_id}")
        return connection

    def get_active_connection(self, db: Session) -> Optional[QuickBooksConnection]:
        """Most recently updated active connection, if any"""
        return (
            db.query(QuickBooksConnection)
            .filter(QuickBooksConnection.is_active.is_(True))
            .order_by(QuickBooksConnection.updated_at.desc(), QuickBooksConnection.id.desc())
            .first()
        )

    async def disconnect(self, db: Session, connection: QuickBooksConnection) -> None:
        """Revoke the refresh token with Intuit and deactivate the connection"""
        try:
            async with self._http() as client:
                await client.post(
                    QUICKBOOKS_REVOKE_URL,
                    headers={
                        "Accept": "application/json",
                        "Content-Type": "application/json",
                        "Authorization": f"Basic {self._basic_auth_header()}",
                    },
                    json={"token": decrypt_token(connection.refresh_token)},
                )
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ QuickBooks token revoke failed, deactivating anyway: {e}")

        connection.is_active = False
        connection.updated_at = datetime.utcnow()
        db.commit()
        logger.info(f"✅ QuickBooks disconnected for realm {connection.realm_id}")

    # ------------------------------------------------------------------
    # REST
    # ------------------------------------------------------------------

    def _retry_delay(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self.retry_backoff * (2**attempt)

    async def make_api_request(
        self,
        connection: QuickBooksConnection,
        endpoint: str,
        method: str = "GET",
        data: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """
        Make an authenticated request against /v3/company/{realm}/{endpoint}.

        Rate limiting (429), server errors and transport failures are retried
        with exponential backoff; any other non-2xx answer raises
        QuickBooksAPIError straight away.

        Writes carry one requestid for all attempts so QuickBooks applies a
        retried create or update at most once.
        """
        access_token = await self.ensure_fresh_token(connection)
        url = f"{connection.base_url}/v3/company/{connection.realm_id}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }
        if method != "GET" and data is not None:
            headers["Content-Type"] = "application/json"
        query_params = {"minorversion": QUICKBOOKS_MINOR_VERSION, **(params or {})}
        if method != "GET":
            query_params.setdefault("requestid", uuid.uuid4().hex)

        attempt = 0
        while True:
            try:
                async with self._http() as client:
                    response = await client.request(
                        method,
                        url,
                        headers=headers,
                        params=query_params,
                        json=data if method != "GET" else None,
                    )
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    logger.error(f"❌ QuickBooks {method} {endpoint} failed after {attempt + 1} attempts: {e}")
                    raise
                delay = self._retry_delay(attempt)
                logger.warning(f"⚠️ QuickBooks transport error ({e}), retrying in {delay:.1f}s")
                attempt += 1
                await asyncio.sleep(delay)
                continue

            if response.status_code in (200, 201):
                return response.json()

            error = QuickBooksAPIError(response.status_code, response.text)
            if not error.is_transient or attempt >= self.max_retries:
                logger.error(f"❌ QuickBooks {method} {endpoint} failed: {response.status_code}")
                raise error

            delay = self._retry_delay(attempt, response)
            logger.warning(
                f"⚠️ QuickBooks {method} {endpoint} returned {response.status_code}, "
                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{self.max_retries})"
            )
            attempt += 1
            await asyncio.sleep(delay)

    async def get_company_info(self, connection: QuickBooksConnection) -> dict:
        return await self.make_api_request(connection, f"companyinfo/{connection.realm_id}")

    async def test_connection(self, connection: QuickBooksConnection) -> bool:
        """Make a cheap API call to check the connection works"""
        try:
            await self.get_company_info(connection)
            return True
        except Exception as e:
            logger.error(f"❌ QuickBooks connection test failed: {e}")
            return False

    async def query_entity(
        self,
        connection: QuickBooksConnection,
        entity: str,
        start_position: int = 1,
        max_results: Optional[int] = None,
        where: Optional[str] = None,
    ) -> dict:
        """Run one page of a QuickBooks query"""
        query = f"SELECT * FROM {entity}"
        if where:
            query += f" WHERE {where}"
        query += f" STARTPOSITION {start_position} MAXRESULTS {max_results or self.page_size}"
        return await self.make_api_request(connection, "query", params={"query": query})

    async def iter_entity(
        self, connection: QuickBooksConnection, entity: str, where: Optional[str] = None
    ) -> AsyncIterator[dict]:
        """Lazily walk every page of a QuickBooks query"""
        start_position = 1
        while True:
            response = await self.query_entity(
                connection, entity, start_position=start_position, where=where
            )
            rows: list[Any] = (response.get("QueryResponse") or {}).get(entity) or []
            for row in rows:
                yield row

            if len(rows) < self.page_size:
                break
            start_position += self.page_size

    async def get_customers(
        self, connection: QuickBooksConnection, start_position: int = 1, max_results: Optional[int] = None
    ) -> dict:
        return await self.query_entity(connection, "Customer", start_position, max_results)

    def iter_customers(self, connection: QuickBooksConnection) -> AsyncIterator[dict]:
        return self.iter_entity(connection, "Customer")

    async def create_customer(self, connection: QuickBooksConnection, customer_data: dict) -> dict:
        return await self.make_api_request(connection, "customer", "POST", customer_data)

    async def update_customer(self, connection: QuickBooksConnection, customer_data: dict) -> dict:
        # QBO updates are POSTs carrying Id + SyncToken
        return await self.make_api_request(connection, "customer", "POST", customer_data)

    async def get_items(
        self, connection: QuickBooksConnection, start_position: int = 1, max_results: Optional[int] = None
    ) -> dict:
        return await self.query_entity(connection, "Item", start_position, max_results)

    def iter_items(self, connection: QuickBooksConnection) -> AsyncIterator[dict]:
        return self.iter_entity(connection, "Item")


quickbooks_client = QuickBooksClient()
