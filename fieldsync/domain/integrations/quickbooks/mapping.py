"""
Field mapping between local records and QuickBooks entities
Builds outbound Customer payloads and reads inbound Customer / Item bodies
"""

from typing import Any, Optional

from ....models import Customer


def prune_payload(data: Any) -> Any:
    """
    Recursively drop keys whose value is None, and nested dicts left empty.
    QuickBooks rejects explicit nulls for optional fields.
    """
    if isinstance(data, dict):
        cleaned = {}
        for key, value in data.items():
            value = prune_payload(value)
            if value is None:
                continue
            if isinstance(value, dict) and not value:
                continue
            cleaned[key] = value
        return cleaned
    if isinstance(data, list):
        return [prune_payload(v) for v in data if v is not None]
    return data


def build_customer_payload(
    customer: Customer,
    quickbooks_id: Optional[str] = None,
    sync_token: Optional[str] = None,
) -> dict:
    """
    Build a QuickBooks Customer body from a local customer.

    Passing quickbooks_id turns the body into a sparse update request carrying
    the last known SyncToken.
    """
    payload = {
        "DisplayName": customer.display_name,
        "CompanyName": customer.company_name,
        "GivenName": customer.first_name,
        "FamilyName": customer.last_name,
        "PrimaryEmailAddr": {"Address": customer.email} if customer.email else None,
        "PrimaryPhone": {"FreeFormNumber": customer.phone} if customer.phone else None,
        "BillAddr": (
            {
                "Line1": customer.street,
                "Line2": customer.address,
                "City": customer.city,
                "CountrySubDivisionCode": customer.state,
                "PostalCode": customer.zip,
                "Country": "US",
            }
            if customer.street or customer.address
            else None
        ),
    }

    if quickbooks_id:
        payload["Id"] = quickbooks_id
        payload["SyncToken"] = sync_token
        payload["sparse"] = True

    return prune_payload(payload)


def extract_entity(response: Optional[dict], entity: str) -> Optional[dict]:
    """
    Read a single entity back from a QuickBooks response.
    Handles both {"Customer": {...}} and {"QueryResponse": {"Customer": [...]}} shapes.
    """
    if not response:
        return None
    query_rows = (response.get("QueryResponse") or {}).get(entity) or []
    if query_rows:
        return query_rows[0]
    return response.get(entity)


def remote_display_name(qb_entity: dict) -> str:
    return qb_entity.get("DisplayName") or qb_entity.get("Name") or str(qb_entity.get("Id", "?"))


def customer_fields_from_quickbooks(qb_customer: dict) -> dict:
    """Local Customer column values mirrored from a QuickBooks Customer"""
    bill_addr = qb_customer.get("BillAddr") or {}
    return {
        "company_name": (
            qb_customer.get("CompanyName")
            or qb_customer.get("DisplayName")
            or qb_customer.get("Name")
        ),
        "first_name": qb_customer.get("GivenName"),
        "last_name": qb_customer.get("FamilyName"),
        "email": (qb_customer.get("PrimaryEmailAddr") or {}).get("Address"),
        "phone": (qb_customer.get("PrimaryPhone") or {}).get("FreeFormNumber"),
        "street": bill_addr.get("Line1"),
        "address": bill_addr.get("Line2"),
        "city": bill_addr.get("City"),
        "state": bill_addr.get("CountrySubDivisionCode"),
        "zip": bill_addr.get("PostalCode"),
    }


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def item_fields_from_quickbooks(qb_item: dict) -> dict:
    """QuickBooksItem column values mirrored from a QuickBooks Item"""
    return {
        "name": qb_item.get("Name"),
        "description": qb_item.get("Description"),
        "type": qb_item.get("Type"),
        "unit_price": _to_float(qb_item.get("UnitPrice")),
        "qty_on_hand": _to_float(qb_item.get("QtyOnHand")),
        "taxable": bool(qb_item.get("Taxable", False)),
        "active": qb_item.get("Active") is not False,
        "sku": qb_item.get("Sku"),
        "sync_version": qb_item.get("SyncToken"),
    }
