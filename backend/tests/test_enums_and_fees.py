import re
from datetime import datetime

import pytest

from digimarket.payments.details import CryptoTransferDetails, QrDetails, parse_details
from digimarket.utils.commission import compute_breakdown, generate_order_number
from digimarket.utils.enums import OrderStatus, PaymentMethod, ProductType
from digimarket.utils.errors import ValidationError


class TestPaymentMethodWire:
    @pytest.mark.parametrize(
        "wire,method",
        [
            ("stripe", PaymentMethod.CARD),
            ("qr", PaymentMethod.QR),
            ("crypto", PaymentMethod.CRYPTO_TRANSFER),
            ("wallet", PaymentMethod.WALLET),
        ],
    )
    def test_maps_both_ways(self, wire, method):
        assert PaymentMethod.from_wire(wire) is method
        assert method.to_wire() == wire

    def test_is_case_insensitive(self):
        assert PaymentMethod.from_wire(" Wallet ") is PaymentMethod.WALLET

    @pytest.mark.parametrize("raw", ["", None, "paypal", "CARD"])
    def test_rejects_unknown(self, raw):
        with pytest.raises(ValidationError):
            PaymentMethod.from_wire(raw)

    def test_external_confirmation(self):
        assert PaymentMethod.CRYPTO_TRANSFER.needs_external_confirmation
        assert not PaymentMethod.WALLET.needs_external_confirmation


class TestStatusHelpers:
    def test_terminal_states(self):
        assert OrderStatus.COMPLETED.is_terminal
        assert OrderStatus.REFUNDED.is_terminal
        assert OrderStatus.CANCELLED.is_terminal
        assert not OrderStatus.UNDER_REVIEW.is_terminal
        assert not OrderStatus.PROCESSING.is_terminal

    def test_product_type_traits(self):
        assert ProductType.TOP_UP.uses_codes
        assert ProductType.STREAMING.is_time_boxed
        assert not ProductType.GIFT_CARD.is_time_boxed


class TestFeeBreakdown:
    def test_fixed_and_percent_fee_with_commission(self):
        fees = compute_breakdown(100.0, fee_fixed=0.5, fee_percent=2.0, commission_rate=10.0)
        assert fees.subtotal == 100.0
        assert fees.service_fee_amount == 2.5
        assert fees.total_amount == 102.5
        assert fees.commission_amount == 10.0
        assert fees.seller_earnings == 90.0

    def test_rounds_to_cents(self):
        fees = compute_breakdown(12.34, fee_fixed=0, fee_percent=10.0, commission_rate=15.0)
        assert fees.service_fee_amount == 1.23
        assert fees.total_amount == 13.57
        assert fees.commission_amount == 1.85
        assert fees.seller_earnings == 10.49

    def test_order_number_format(self):
        number = generate_order_number(datetime(2024, 3, 9, 12, 0))
        assert re.fullmatch(r"DM-20240309-[0-9A-Z]{5}", number)


class TestPaymentDetails:
    def test_parses_tagged_variant(self):
        expires = datetime(2024, 1, 1, 12, 30)
        details = QrDetails(reference="QR-1-ABCDEF", qr_content="DIGIMARKET|QR-1", expires_at=expires)
        parsed = parse_details(details.to_dict())
        assert isinstance(parsed, QrDetails)
        assert parsed.reference == "QR-1-ABCDEF"
        assert parsed.expires_at == expires

    def test_crypto_variant_keeps_expected_amount(self):
        details = CryptoTransferDetails(
            memo_token="DM-ABCDEFGH",
            expected_amount=55.5,
            coin="USDT",
            network="TRC20",
            address="TADDR",
            expires_at=datetime(2024, 1, 1),
        )
        assert parse_details(details.to_dict()).expected_amount == 55.5

    def test_unknown_kind_fails(self):
        with pytest.raises(ValueError):
            parse_details({"kind": "paypal", "id": "x"})
