from marshmallow import fields, validates_schema, ValidationError, validate

from rentat.extensions.ma import ma


class RentalRequestSchema(ma.Schema):
    """
    Body of a rental request.
    Pricing is never accepted from the client; it is computed from the
    item and the date range.
    """

    item_id = fields.Integer(required=True)
    start = fields.DateTime(required=True)  # ISO 8601
    end = fields.DateTime(required=True)
    delivery_method = fields.String(
        required=False,
        load_default=None,
        validate=validate.OneOf(["pickup", "delivery", "meet-in-middle"]),
    )
    message = fields.String(required=False, load_default=None, validate=validate.Length(max=1000))

    @validates_schema
    def validate_dates(self, data, **kwargs):
        start = data.get("start")
        end = data.get("end")
        if start and end and end <= start:
            raise ValidationError("end must be after start", field_name="end")


class OwnerDecisionSchema(ma.Schema):
    message = fields.String(required=False, load_default=None, validate=validate.Length(max=1000))


class CancelSchema(ma.Schema):
    reason = fields.String(required=False, load_default=None, validate=validate.Length(max=300))


class DisputeRaiseSchema(ma.Schema):
    reason = fields.String(required=True, validate=validate.Length(min=1, max=2000))
    # Evidence files are uploaded to object storage first; only URLs arrive here.
    evidence = fields.List(fields.Url(), required=False, load_default=list)


class DisputeResolveSchema(ma.Schema):
    decision = fields.String(required=True, validate=validate.Length(min=1, max=2000))
    refund_amount = fields.Decimal(required=False, load_default=0, as_string=True)
    owner_compensation = fields.Decimal(required=False, load_default=0, as_string=True)


class PaymentWebhookSchema(ma.Schema):
    rental_id = fields.Integer(required=True)
    payment_intent_id = fields.String(required=True, validate=validate.Length(min=1, max=120))
    status = fields.String(required=True, validate=validate.OneOf(["succeeded", "failed"]))
    amount = fields.Decimal(required=True, as_string=True)


class ReasonSchema(ma.Schema):
    reason = fields.String(required=True, validate=validate.Length(min=1, max=300))


class PartialReleaseSchema(ma.Schema):
    amount = fields.Decimal(required=True, as_string=True)
    reason = fields.String(required=True, validate=validate.Length(min=1, max=300))


class WithdrawalSchema(ma.Schema):
    amount = fields.Decimal(required=True, as_string=True)
    method = fields.String(
        required=True,
        validate=validate.OneOf(["bank_transfer", "mobile_wallet", "instapay"]),
    )


class LedgerTransitionSchema(ma.Schema):
    availability_status = fields.String(
        required=True,
        validate=validate.OneOf(["PENDING", "LOCKED", "AVAILABLE"]),
    )
