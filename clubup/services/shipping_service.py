"""
Shipping Quote Service
Aggregates carrier rates (Royal Mail, DPD, collection) for a parcel between two UK postcodes
"""
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

UK_POSTCODE_RE = re.compile(r"^([A-Z]{1,2}[0-9][A-Z0-9]? [0-9][A-Z]{2})$")

DEFAULT_DIMENSIONS = {"length": 50, "width": 30, "height": 20, "weight": 1.0}

# Standard parcel sizes for golf equipment (cm / kg)
STANDARD_DIMENSIONS = {
    "drivers": {"length": 115, "width": 15, "height": 15, "weight": 0.3},
    "irons": {"length": 100, "width": 40, "height": 15, "weight": 3.5},
    "putters": {"length": 90, "width": 15, "height": 15, "weight": 0.5},
    "golf-bags": {"length": 120, "width": 25, "height": 25, "weight": 2.5},
    "shoes": {"length": 35, "width": 25, "height": 15, "weight": 1.0},
    "apparel": {"length": 30, "width": 25, "height": 5, "weight": 0.5},
}

# Highlands & Islands, Northern Ireland and other surcharge areas
REMOTE_AREA_PREFIXES = (
    "IV", "HS", "KA27", "KA28", "KW", "PA20", "PA41", "PA42", "PA43", "PA44", "PA45",
    "PA46", "PA47", "PA48", "PA49", "PA60", "PA61", "PA62", "PA63", "PA64", "PA65",
    "PA66", "PA67", "PA68", "PA69", "PA70", "PA71", "PA72", "PA73", "PA74", "PA75",
    "PA76", "PA77", "PA78", "PH17", "PH18", "PH19", "PH20", "PH21", "PH22", "PH23",
    "PH24", "PH25", "PH26", "PH30", "PH31", "PH32", "PH33", "PH34", "PH35", "PH36",
    "PH37", "PH38", "PH39", "PH40", "PH41", "PH42", "PH43", "PH44", "PH49", "PH50",
    "ZE", "BT",
)
REMOTE_AREA_SURCHARGE = 5.00

# (max chargeable weight kg, price)
ROYAL_MAIL_PRICE_BANDS = (
    (0.1, 3.50),
    (0.5, 4.50),
    (1.0, 5.95),
    (2.0, 7.95),
    (5.0, 12.95),
    (10.0, 19.95),
)
ROYAL_MAIL_MAX_BAND_PRICE = 29.95

# Royal Mail service codes -> (option id, name, delivery time, description, tracked)
ROYAL_MAIL_SERVICES = {
    "SD1": ("rm-special-delivery", "Special Delivery Guaranteed", "Next working day by 1pm",
            "Guaranteed next day with full insurance", True),
    "TPN24": ("rm-tracked-24", "Tracked 24", "1-2 working days", "Next day tracked delivery", True),
    "TPS48": ("rm-tracked-48", "Tracked 48", "2-3 working days", "Tracked delivery", True),
    "STL1": ("rm-1st-class", "1st Class", "1-2 working days", "Fast delivery", False),
    "STL2": ("rm-2nd-class", "2nd Class", "2-3 working days", "Standard delivery", False),
}

DPD_BASE_PRICE = 15.99
DPD_HEAVY_KG = 10.0
DPD_SURCHARGE_PER_KG = 2.50


def normalize_postcode(postcode: str) -> str:
    """Uppercase and put the single space before the inward code"""
    compact = re.sub(r"\s+", "", postcode or "").upper()
    if len(compact) < 5:
        return compact
    return f"{compact[:-3]} {compact[-3:]}"


def validate_postcode(postcode: str) -> bool:
    """Validate UK postcode format"""
    return bool(UK_POSTCODE_RE.match(normalize_postcode(postcode)))


def get_standard_dimensions(category: Optional[str]) -> dict:
    """Default parcel dimensions for a product category"""
    return dict(STANDARD_DIMENSIONS.get((category or "").lower(), DEFAULT_DIMENSIONS))


def _money(value: float) -> float:
    return round(value * 100) / 100


@dataclass
class ShippingAddress:
    postcode: str
    country: str = "GB"


@dataclass
class ShippingDimensions:
    length: float
    width: float
    height: float
    weight: float

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ShippingDimensions":
        merged = {**DEFAULT_DIMENSIONS, **(data or {})}
        return cls(
            length=float(merged["length"]),
            width=float(merged["width"]),
            height=float(merged["height"]),
            weight=float(merged["weight"]),
        )


@dataclass
class ShippingQuoteRequest:
    from_address: ShippingAddress
    to_address: ShippingAddress
    dimensions: ShippingDimensions
    value: float = 0
    category: str = "golf-equipment"


@dataclass
class ShippingOption:
    id: str
    carrier: str
    service: str
    price: float
    currency: str = "GBP"
    estimated_days: str = ""
    description: str = ""
    tracking: bool = False
    insurance: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ShippingQuoteResult:
    success: bool
    options: list[ShippingOption] = field(default_factory=list)
    error: Optional[str] = None


class RoyalMailService:
    """Royal Mail rates; falls back to the published rate table without an API key"""

    def __init__(self, api_key: Optional[str], api_url: str, timeout: float = 30.0):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout

    async def get_shipping_options(self, request: ShippingQuoteRequest) -> list[ShippingOption]:
        if not self.api_key:
            logger.debug("Royal Mail API key not configured, using rate table")
            return self.get_table_rates(request)

        payload = {
            "ReferenceId": f"quote-{int(time.time() * 1000)}",
            "RequestedShipment": {
                "ShipTimestamp": datetime.now(timezone.utc).isoformat(),
                "ServiceType": "ALL",
                "Shipper": {
                    "PostalCode": request.from_address.postcode,
                    "CountryCode": request.from_address.country,
                },
                "Recipient": {
                    "PostalCode": request.to_address.postcode,
                    "CountryCode": request.to_address.country,
                },
                "RequestedPackageLineItems": [
                    {
                        "SequenceNumber": "1",
                        "Weight": {"Units": "KG", "Value": request.dimensions.weight},
                        "Dimensions": {
                            "Length": request.dimensions.length,
                            "Width": request.dimensions.width,
                            "Height": request.dimensions.height,
                            "Units": "CM",
                        },
                        "InsuredValue": {"Amount": request.value, "Currency": "GBP"},
                    }
                ],
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as http_client:
                response = await http_client.post(
                    f"{self.api_url}/rate",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Accept": "application/json",
                    },
                )
            if response.status_code != 200:
                logger.error(f"Royal Mail API error: HTTP {response.status_code}")
                return self.get_table_rates(request)
            return self.parse_rate_response(response.json())
        except httpx.HTTPError as e:
            logger.error(f"Royal Mail API error: {e}")
            return self.get_table_rates(request)

    def parse_rate_response(self, data: dict) -> list[ShippingOption]:
        options = []
        for rate in data.get("RateReplyDetails", []):
            service_type = rate.get("ServiceType", "")
            fallback = (f"rm-{service_type.lower()}", service_type, "2-3 working days", "Standard delivery", False)
            option_id, name, days, description, tracked = ROYAL_MAIL_SERVICES.get(service_type, fallback)
            details = (rate.get("RatedShipmentDetails") or [{}])[0].get("ShipmentRateDetail", {})
            options.append(
                ShippingOption(
                    id=option_id,
                    carrier="Royal Mail",
                    service=name,
                    price=float(details.get("TotalNetCharge", {}).get("Amount", 0) or 0),
                    estimated_days=days,
                    description=description,
                    tracking=tracked,
                    insurance=float(details.get("InsuranceCharges", {}).get("Amount", 0) or 0),
                )
            )
        return sorted(options, key=lambda option: option.price)

    def get_table_rates(self, request: ShippingQuoteRequest) -> list[ShippingOption]:
        base_price = self.calculate_base_price(request.dimensions, request.to_address.postcode)
        dims = request.dimensions
        is_large = dims.length > 61 or dims.width > 46 or dims.height > 46

        options = [
            ShippingOption("rm-2nd-class", "Royal Mail", "2nd Class", _money(base_price * 0.8),
                           estimated_days="2-3 working days", description="Standard delivery"),
            ShippingOption("rm-1st-class", "Royal Mail", "1st Class", _money(base_price),
                           estimated_days="1-2 working days", description="Fast delivery"),
            ShippingOption("rm-tracked-48", "Royal Mail", "Tracked 48", _money(base_price * 1.3),
                           estimated_days="2-3 working days", description="Tracked delivery", tracking=True),
            ShippingOption("rm-tracked-24", "Royal Mail", "Tracked 24", _money(base_price * 1.6),
                           estimated_days="1-2 working days", description="Next day tracked delivery",
                           tracking=True),
        ]

        if request.value and request.value > 100:
            options.append(
                ShippingOption("rm-special-delivery", "Royal Mail", "Special Delivery Guaranteed",
                               _money(base_price * 2.2), estimated_days="Next working day by 1pm",
                               description="Guaranteed next day with full insurance", tracking=True,
                               insurance=request.value)
            )

        # 1st/2nd class have parcel size limits
        if is_large:
            options = [option for option in options if "Class" not in option.service]
        return options

    @staticmethod
    def calculate_base_price(dimensions: ShippingDimensions, postcode: str) -> float:
        volumetric_weight = (dimensions.length * dimensions.width * dimensions.height) / 5000
        chargeable_weight = max(dimensions.weight, volumetric_weight)

        base_price = ROYAL_MAIL_MAX_BAND_PRICE
        for max_weight, price in ROYAL_MAIL_PRICE_BANDS:
            if chargeable_weight <= max_weight:
                base_price = price
                break

        if normalize_postcode(postcode).startswith(REMOTE_AREA_PREFIXES):
            base_price += REMOTE_AREA_SURCHARGE
        return base_price


class DPDService:
    """DPD rates, offered only for large or heavy parcels"""

    def __init__(self, api_key: Optional[str] = None):
        # TODO: call the DPD rating API once account credentials are provisioned
        self.api_key = api_key

    async def get_shipping_options(self, request: ShippingQuoteRequest) -> list[ShippingOption]:
        dims = request.dimensions
        is_large = dims.length > 100 or dims.width > 60 or dims.height > 60
        is_heavy = dims.weight > DPD_HEAVY_KG
        if not is_large and not is_heavy:
            return []

        weight_surcharge = max(0.0, (dims.weight - DPD_HEAVY_KG) * DPD_SURCHARGE_PER_KG)
        return [
            ShippingOption("dpd-classic", "DPD", "DPD Classic", _money(DPD_BASE_PRICE + weight_surcharge),
                           estimated_days="1-2 working days",
                           description="Next working day delivery with 1-hour time slot", tracking=True),
            ShippingOption("dpd-express", "DPD", "DPD Express 10:30",
                           _money(DPD_BASE_PRICE * 1.8 + weight_surcharge),
                           estimated_days="Next working day by 10:30am",
                           description="Guaranteed morning delivery", tracking=True),
        ]


class ShippingService:
    """Main shipping quote service"""

    def __init__(
        self,
        royal_mail_api_key: Optional[str] = None,
        royal_mail_api_url: str = "https://api.royalmail.net/shipping/v2",
        dpd_api_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.royal_mail = RoyalMailService(royal_mail_api_key, royal_mail_api_url, timeout)
        self.dpd = DPDService(dpd_api_key)

    @staticmethod
    def collection_options() -> list[ShippingOption]:
        return [
            ShippingOption("collection", "Collection", "Collect in Person", 0.0,
                           estimated_days="Arrange with seller", description="Meet seller to collect item")
        ]

    async def calculate_shipping(self, request: ShippingQuoteRequest) -> ShippingQuoteResult:
        """Collect options from every carrier, cheapest first"""
        try:
            options: list[ShippingOption] = []
            options.extend(await self.royal_mail.get_shipping_options(request))
            options.extend(await self.dpd.get_shipping_options(request))
            options.extend(self.collection_options())
            options.sort(key=lambda option: option.price)
            return ShippingQuoteResult(success=True, options=options)
        except Exception as e:
            logger.error(f"❌ Shipping calculation error: {e}")
            return ShippingQuoteResult(
                success=False, error="Unable to calculate shipping rates at this time"
            )
