# catsync Resource Contracts
# Table-driven endpoint, method and payload shaping per resource kind

from dataclasses import dataclass, field
from typing import Any, Optional

from catsync.sync.errors import ValidationError
from catsync.sync.row import OWNER_RESOURCE_COLUMN, Operation, ResourceKind, Row
from catsync.utils.hashing import normalize_value

HTTP_METHODS: dict[Operation, str] = {
    Operation.CREATE: "POST",
    Operation.UPDATE: "PUT",
    Operation.DELETE: "DELETE",
}

# Collection path segment for metafield owners
OWNER_COLLECTIONS: dict[ResourceKind, str] = {
    ResourceKind.PRODUCT: "products",
    ResourceKind.VARIANT: "variants",
}


@dataclass(frozen=True)
class ResourceContract:
    """
    Remote contract for one resource kind.

    Endpoints are templates formatted with ``id``, the row's fields and,
    for metafields, ``owner_collection``.
    """

    kind: ResourceKind
    wrapper: str
    fields: tuple[str, ...]
    create_endpoint: str
    update_endpoint: str
    delete_endpoint: str
    requires: dict[Operation, tuple[str, ...]] = field(default_factory=dict)
    boolean_fields: tuple[str, ...] = ()

    def method(self, operation: Operation) -> str:
        """HTTP method for an operation."""
        return HTTP_METHODS[operation]

    def missing_identifiers(self, row: Row, operation: Operation) -> list[str]:
        """
        List identifiers the operation needs but the row lacks.

        Args:
            row: Row to inspect.
            operation: Concrete operation (not MIXED).

        Returns:
            Names of missing identifier columns, empty if complete.
        """
        missing: list[str] = []
        if operation in (Operation.UPDATE, Operation.DELETE) and not row.has_remote_id:
            missing.append("id")
        for name in self.requires.get(operation, ()):
            if row.get(name) is None:
                missing.append(name)
        if self.kind == ResourceKind.METAFIELD and operation == Operation.CREATE:
            if owner_kind(row) is None:
                missing.append(OWNER_RESOURCE_COLUMN)
        return missing

    def endpoint(self, row: Row, operation: Operation) -> str:
        """Format the endpoint for an operation on a row."""
        template = {
            Operation.CREATE: self.create_endpoint,
            Operation.UPDATE: self.update_endpoint,
            Operation.DELETE: self.delete_endpoint,
        }[operation]
        values = {key: normalize_value(value) for key, value in row.fields.items()}
        values["id"] = row.id
        owner = owner_kind(row)
        if owner is not None:
            values["owner_collection"] = OWNER_COLLECTIONS[owner]
        return template.format(**values)

    def payload(self, row: Row, operation: Operation) -> Optional[dict[str, Any]]:
        """
        Shape the request body from the row using the field allow-list.

        Returns:
            Wrapped payload, or None for deletes.
        """
        if operation == Operation.DELETE:
            return None

        body: dict[str, Any] = {}
        for name in self.fields:
            if name not in row.fields:
                continue
            value = row.fields[name]
            if value is None:
                continue
            if name in self.boolean_fields:
                value = normalize_value(value) == "true"
            body[name] = value

        if operation == Operation.UPDATE:
            body["id"] = row.id
        return {self.wrapper: body}


PRODUCT_FIELDS = (
    "title",
    "handle",
    "body_html",
    "vendor",
    "product_type",
    "tags",
    "status",
    "published",
    "published_at",
    "template_suffix",
    "seo_title",
    "seo_description",
)

VARIANT_FIELDS = (
    "title",
    "option1",
    "option2",
    "option3",
    "sku",
    "barcode",
    "price",
    "compare_at_price",
    "weight",
    "weight_unit",
    "inventory_policy",
    "inventory_management",
    "fulfillment_service",
    "requires_shipping",
    "taxable",
    "tax_code",
)

METAFIELD_FIELDS = ("namespace", "key", "value", "type", "description")

IMAGE_FIELDS = ("src", "alt", "position")

RESOURCE_CONTRACTS: dict[ResourceKind, ResourceContract] = {
    ResourceKind.PRODUCT: ResourceContract(
        kind=ResourceKind.PRODUCT,
        wrapper="product",
        fields=PRODUCT_FIELDS,
        create_endpoint="products.json",
        update_endpoint="products/{id}.json",
        delete_endpoint="products/{id}.json",
        boolean_fields=("published",),
    ),
    ResourceKind.VARIANT: ResourceContract(
        kind=ResourceKind.VARIANT,
        wrapper="variant",
        fields=VARIANT_FIELDS,
        create_endpoint="products/{product_id}/variants.json",
        update_endpoint="variants/{id}.json",
        delete_endpoint="products/{product_id}/variants/{id}.json",
        requires={
            Operation.CREATE: ("product_id",),
            Operation.DELETE: ("product_id",),
        },
        boolean_fields=("requires_shipping", "taxable"),
    ),
    ResourceKind.METAFIELD: ResourceContract(
        kind=ResourceKind.METAFIELD,
        wrapper="metafield",
        fields=METAFIELD_FIELDS,
        create_endpoint="{owner_collection}/{owner_id}/metafields.json",
        update_endpoint="metafields/{id}.json",
        delete_endpoint="metafields/{id}.json",
        requires={Operation.CREATE: ("owner_id",)},
    ),
    ResourceKind.IMAGE: ResourceContract(
        kind=ResourceKind.IMAGE,
        wrapper="image",
        fields=IMAGE_FIELDS,
        create_endpoint="products/{product_id}/images.json",
        update_endpoint="products/{product_id}/images/{id}.json",
        delete_endpoint="products/{product_id}/images/{id}.json",
        requires={
            Operation.CREATE: ("product_id",),
            Operation.UPDATE: ("product_id",),
            Operation.DELETE: ("product_id",),
        },
    ),
}


@dataclass
class RemoteCall:
    """Descriptor of a single remote request."""

    kind: ResourceKind
    operation: Operation
    method: str
    endpoint: str
    payload: Optional[dict[str, Any]] = None
    row_id: str = ""


def get_contract(kind: ResourceKind) -> ResourceContract:
    """Get the contract for a resource kind."""
    return RESOURCE_CONTRACTS[kind]


def owner_kind(row: Row) -> Optional[ResourceKind]:
    """
    Explicit owner kind of a metafield row.

    Owner kind is never inferred from which ids happen to be present.
    """
    value = str(row.get(OWNER_RESOURCE_COLUMN, "")).strip().lower()
    if not value:
        return None
    try:
        kind = ResourceKind(value)
    except ValueError:
        return None
    return kind if kind in OWNER_COLLECTIONS else None


def resolve_operation(row: Row, operation: Operation) -> Operation:
    """Disambiguate MIXED: remote id present means update, absent means create."""
    if operation != Operation.MIXED:
        return operation
    return Operation.UPDATE if row.has_remote_id else Operation.CREATE


def build_call(row: Row, operation: Operation) -> RemoteCall:
    """
    Build the remote call descriptor for a row.

    Args:
        row: Row to dispatch.
        operation: Requested operation, MIXED allowed.

    Returns:
        RemoteCall ready for dispatch.

    Raises:
        ValidationError: If identifiers the operation needs are missing.
    """
    concrete = resolve_operation(row, operation)
    contract = get_contract(row.kind)

    missing = contract.missing_identifiers(row, concrete)
    if missing:
        raise ValidationError(
            f"{row.kind.value} row {row.row_id} cannot be {concrete.value}d: missing {', '.join(missing)}"
        )

    return RemoteCall(
        kind=row.kind,
        operation=concrete,
        method=contract.method(concrete),
        endpoint=contract.endpoint(row, concrete),
        payload=contract.payload(row, concrete),
        row_id=row.row_id,
    )
