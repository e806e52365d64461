DOC_TYPES = (
    "SWMS",
    "PAYMENT_CLAIM_WA",
    "TOOLBOX_TALK",
    "VARIATION_CHANGE_ORDER",
    "EXTENSION_OF_TIME",
    "PROGRESS_CLAIM_TAX_INVOICE",
    "HANDOVER_PRACTICAL_COMPLETION",
    "MAINTENANCE_CARE_GUIDE",
)

FIELD_TYPES = ("text", "textarea", "date", "select", "multiSelect", "currency", "number")

SELECT_FIELD_TYPES = ("select", "multiSelect")

OVIS_SEVERITIES = ("low", "medium", "high")

# Document lifecycle
DOC_STATUS_DRAFT = "DRAFT"
DOC_STATUS_CONFIRMED = "CONFIRMED"
DOC_STATUS_ISSUED = "ISSUED"
DOC_STATUSES = (DOC_STATUS_DRAFT, DOC_STATUS_CONFIRMED, DOC_STATUS_ISSUED)

# INTERNAL shows OVIS warnings and the draft disclaimer; CLIENT is the
# professional export with the business header.
AUDIENCE_INTERNAL = "INTERNAL"
AUDIENCE_CLIENT = "CLIENT"
AUDIENCES = (AUDIENCE_INTERNAL, AUDIENCE_CLIENT)

# Tax invoices and payment claims are not valid without an ABN.
ABN_REQUIRED_DOC_TYPES = ("PROGRESS_CLAIM_TAX_INVOICE", "PAYMENT_CLAIM_WA")
ABN_RECOMMENDED_DOC_TYPES = ("VARIATION_CHANGE_ORDER", "HANDOVER_PRACTICAL_COMPLETION")

DRAFT_FOOTER = "Draft generated from user inputs. Review required. Not certified or verified."
