"""
Shipping Service

Label purchase and voiding on top of the UPS client and the stores.

One label per packed box. A failed purchase is reported for that box and
the remaining boxes are still attempted. If no box gets a label the whole
purchase fails with LabelPurchaseError.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from smartship.core.exceptions import (
    InputValidationError,
    LabelPurchaseError,
    ShipmentNotFoundError,
    VoidError,
)
from smartship.core.utils import utcnow
from smartship.models.shipment import Shipment, ShipmentStatus
from smartship.services.address_parser import AddressGroup
from smartship.services.packing import Box, pack
from smartship.services.shipment_store import RateQuoteStore, ShipmentStore, VoidStore
from smartship.services.ups_client import (
    DEFAULT_SERVICE_CODE,
    UPSAPIError,
    UPSAddress,
    UPSClient,
    UPSPackage,
    service_name,
)

logger = logging.getLogger(__name__)


@dataclass
class LabelResult:
    address: str
    box: Box
    tracking_number: Optional[str] = None
    label_data: Optional[str] = None
    label_format: Optional[str] = None
    charges: Optional[float] = None
    currency: str = "USD"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "box": self.box.to_dict(),
            "tracking_number": self.tracking_number,
            "label_data": self.label_data,
            "label_format": self.label_format,
            "charges": self.charges,
            "currency": self.currency,
            "error": self.error,
        }


@dataclass
class ShipResult:
    labels: List[LabelResult] = field(default_factory=list)

    @property
    def purchased(self) -> int:
        return sum(1 for label in self.labels if label.ok)

    @property
    def failed(self) -> int:
        return len(self.labels) - self.purchased

    def to_dict(self) -> Dict[str, Any]:
        return {
            "purchased": self.purchased,
            "failed": self.failed,
            "labels": [label.to_dict() for label in self.labels],
        }


class ShippingService:
    """
    Label purchase and void flows.
    """

    def __init__(
        self,
        ups_client: UPSClient,
        shipments: ShipmentStore,
        voids: VoidStore,
        quotes: RateQuoteStore,
        origin: UPSAddress,
    ):
        self.ups_client = ups_client
        self.shipments = shipments
        self.voids = voids
        self.quotes = quotes
        self.origin = origin

    # ==================== Ship ====================

    async def ship(
        self,
        groups: List[AddressGroup],
        ship_to_name: str,
        ship_to_phone: Optional[str] = None,
        service_code: str = DEFAULT_SERVICE_CODE,
        label_format: str = "GIF",
        order_reference: Optional[str] = None,
    ) -> ShipResult:
        for group in groups:
            if not group.address.street or not group.address.city:
                raise InputValidationError(
                    f"Address '{group.address.raw}' needs a street and city to buy a label",
                    field="address",
                    value=group.address.raw,
                )

        result = ShipResult()

        for group in groups:
            destination = UPSAddress(
                postal_code=group.address.postal_code,
                state_province=group.address.state,
                country_code=group.address.country_code,
                name=ship_to_name,
                phone=ship_to_phone,
                address_line1=group.address.street,
                city=group.address.city,
            )

            for box in pack(group.items):
                label = await self._buy_label(
                    group, box, destination, service_code, label_format, order_reference,
                )
                result.labels.append(label)

        if result.labels and result.purchased == 0:
            logger.error(f"Label purchase failed for all {result.failed} boxes")
            raise LabelPurchaseError(
                "UPS did not issue any labels",
                details={"labels": [{"address": failed.address, "error": failed.error} for failed in result.labels]},
            )

        logger.info(f"Label purchase complete: {result.purchased} purchased, {result.failed} failed")
        return result

    async def _buy_label(
        self,
        group: AddressGroup,
        box: Box,
        destination: UPSAddress,
        service_code: str,
        label_format: str,
        order_reference: Optional[str],
    ) -> LabelResult:
        label = LabelResult(address=group.address.raw, box=box)
        package = UPSPackage(
            weight=box.weight,
            length=box.length,
            width=box.width,
            height=box.current_depth,
        )

        try:
            purchase = await self.ups_client.create_shipment(
                self.origin,
                destination,
                package,
                service_code=service_code,
                label_format=label_format,
                reference=order_reference,
            )
        except UPSAPIError as e:
            logger.error(f"Label purchase failed for {group.address.postal_code}: {e.code} - {e.message}")
            label.error = e.message
            return label

        label.tracking_number = purchase.tracking_number
        label.label_data = purchase.label_data
        label.label_format = purchase.label_format
        label.charges = purchase.total_charges
        label.currency = purchase.currency

        try:
            await self.shipments.insert_shipment(
                tracking_number=purchase.tracking_number,
                service_code=service_code,
                service_name=service_name(service_code),
                order_reference=order_reference,
                ship_to_name=destination.name,
                ship_to_phone=destination.phone,
                ship_to_address=group.address.street,
                ship_to_city=group.address.city,
                ship_to_state=group.address.state,
                ship_to_postal_code=group.address.postal_code,
                ship_to_country_code=group.address.country_code,
                ship_from_postal_code=self.origin.postal_code,
                box_length=box.length,
                box_width=box.width,
                box_height=box.current_depth,
                box_weight=box.weight,
                item_count=box.item_count,
                item_sizes=",".join(item.size_token for item in box.items),
                charges_amount=purchase.total_charges,
                charges_currency=purchase.currency,
                label_format=purchase.label_format,
                shipment_id_number=purchase.shipment_id,
                status=ShipmentStatus.CREATED,
            )
        except Exception:
            # The label is paid for; make sure the tracking number is in the logs
            logger.error(f"Label {purchase.tracking_number} purchased but not saved")
            raise

        try:
            await self.quotes.insert_quote(
                quote_type="ship",
                order_reference=order_reference,
                ship_from_postal=self.origin.postal_code,
                ship_from_state=self.origin.state_province,
                ship_to_postal=group.address.postal_code,
                ship_to_state=group.address.state,
                item_count=box.item_count,
                box_count=1,
                service_code=service_code,
                total_charges=purchase.total_charges,
                currency=purchase.currency,
                request_summary={"address": group.address.raw, "box": box.to_dict()},
                response_summary={"tracking_number": purchase.tracking_number},
            )
        except Exception as e:
            logger.warning(f"Failed to log ship quote for {purchase.tracking_number}: {e}")

        return label

    # ==================== Void ====================

    async def void(self, tracking_number: str, reason: Optional[str] = None) -> Shipment:
        """Void a label before pickup and mark the shipment voided."""
        shipment = await self.shipments.get_by_tracking_number(tracking_number)
        if shipment is None:
            raise ShipmentNotFoundError(tracking_number)

        if shipment.status == ShipmentStatus.VOIDED:
            return shipment

        try:
            response = await self.ups_client.void_shipment(shipment.shipment_id_number or tracking_number)
        except UPSAPIError as e:
            await self.voids.insert_void(
                shipment_id=shipment.id,
                tracking_number=tracking_number,
                success=False,
                reason=reason,
                ups_response={"code": e.code, "message": e.message, "details": e.details},
            )
            raise VoidError(f"UPS refused to void {tracking_number}: {e.message}", code=e.code or None)

        await self.voids.insert_void(
            shipment_id=shipment.id,
            tracking_number=tracking_number,
            success=True,
            reason=reason,
            ups_response=response,
        )

        voided_at = utcnow()
        await self.shipments.update_status(tracking_number, ShipmentStatus.VOIDED, voided_at=voided_at)
        shipment.status = ShipmentStatus.VOIDED
        shipment.voided_at = voided_at
        logger.info(f"Shipment {tracking_number} voided")
        return shipment
