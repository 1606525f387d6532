"""Cloudflare DNS client."""

from typing import Any, Optional

import httpx
import structlog

from provisioner.services.protocols import CollaboratorError, DnsRecord

logger = structlog.get_logger(__name__)


def zone_name(domain: str) -> str:
    """Registrable zone for a domain (last two labels)."""
    parts = domain.strip(".").split(".")
    return ".".join(parts[-2:]) if len(parts) >= 2 else domain


def _in_zone(host: str, zone: str) -> bool:
    return bool(zone) and (host == zone or host.endswith("." + zone))


class CloudflareClient:
    """
    Manages one record type/value per domain in Cloudflare.

    `upsert_record` replaces every existing record of the configured type for
    the name, then creates a fresh one.
    """

    def __init__(
        self,
        email: str,
        api_key: str,
        record_type: str = "A",
        base_url: str = "https://api.cloudflare.com/client/v4",
        ttl: int = 300,
        proxied: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.record_type = record_type.upper()
        self.ttl = ttl
        self.proxied = proxied
        self._zones: dict[str, str] = {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "X-Auth-Email": email,
                "X-Auth-Key": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise CollaboratorError(
                f"Failed to connect to Cloudflare: {str(e) or type(e).__name__}",
                code="CLOUDFLARE_API_ERROR",
            ) from e

        if response.status_code == 401:
            raise CollaboratorError(
                "Cloudflare API authentication failed. Check your email and API key.",
                code="CLOUDFLARE_AUTH_ERROR",
            )
        if response.status_code == 403:
            raise CollaboratorError(
                "Cloudflare API access denied. Check your API key permissions.",
                code="CLOUDFLARE_AUTH_ERROR",
            )

        body = response.json()
        if response.is_error or not body.get("success"):
            errors = body.get("errors") or []
            message = errors[0].get("message") if errors else None
            raise CollaboratorError(
                message or f"Cloudflare API error: {response.status_code}",
                code="CLOUDFLARE_API_ERROR",
            )
        return body.get("result")

    async def test_connection(self) -> None:
        await self._request("GET", "/user")
        logger.info("cloudflare_connection_ok")

    def _cached_zone(self, host: str) -> Optional[str]:
        matches = [name for name in self._zones if _in_zone(host, name)]
        if not matches:
            return None
        return self._zones[max(matches, key=len)]

    async def zone_id(self, domain: str) -> str:
        """Zone id for a domain.

        Looks up the registrable name first. Names under multi-label suffixes
        (`shop.example.co.uk`) fall back to the longest zone in the account
        that the domain belongs to.
        """
        host = domain.strip(".").lower()
        cached = self._cached_zone(host)
        if cached is not None:
            return cached

        name = zone_name(host)
        zones = await self._request("GET", "/zones", params={"name": name})
        if zones:
            self._zones[name] = zones[0]["id"]
            return self._zones[name]

        zones = await self._request("GET", "/zones", params={"per_page": 50}) or []
        matches = [z for z in zones if _in_zone(host, z.get("name", ""))]
        if not matches:
            available = [z.get("name", "") for z in zones[:3]]
            hint = (
                f". Available domains: {', '.join(available)}"
                if available
                else ". No domains found in this Cloudflare account or insufficient permissions."
            )
            raise CollaboratorError(
                f"Domain '{name}' not found in Cloudflare account{hint}",
                code="DOMAIN_NOT_IN_CLOUDFLARE",
            )
        zone = max(matches, key=lambda z: len(z["name"]))
        self._zones[zone["name"]] = zone["id"]
        return zone["id"]

    async def list_records(self, name: str) -> list[DnsRecord]:
        zone = await self.zone_id(name)
        raw = await self._request(
            "GET",
            f"/zones/{zone}/dns_records",
            params={"name": name, "type": self.record_type},
        )
        return [
            DnsRecord(
                id=r["id"],
                zone_id=zone,
                name=r.get("name", name),
                type=r.get("type", self.record_type),
                content=r.get("content", ""),
                proxied=bool(r.get("proxied")),
                ttl=int(r.get("ttl", 1)),
            )
            for r in raw or []
        ]

    async def delete_record(self, record: DnsRecord) -> dict[str, Any]:
        await self._request(
            "DELETE", f"/zones/{record.zone_id}/dns_records/{record.id}"
        )
        logger.info("cloudflare_record_deleted", name=record.name, record_id=record.id)
        return {"id": record.id, "name": record.name}

    async def upsert_record(self, name: str, value: str) -> dict[str, Any]:
        zone = await self.zone_id(name)
        existing = await self.list_records(name)
        for record in existing:
            await self.delete_record(record)

        created = await self._request(
            "POST",
            f"/zones/{zone}/dns_records",
            json={
                "type": self.record_type,
                "name": name,
                "content": value,
                "ttl": self.ttl,
                "proxied": self.proxied,
            },
        )
        action = "replaced" if existing else "created"
        logger.info(
            "cloudflare_record_upserted",
            name=name,
            content=value,
            action=action,
            record_id=created.get("id"),
        )
        return {
            "record_id": created.get("id"),
            "name": name,
            "content": value,
            "action": action,
        }

    async def aclose(self) -> None:
        await self._client.aclose()
