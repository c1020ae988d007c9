"""
Domain constants shared by handlers.

Status values are stored verbatim in DynamoDB; keep them stable.
"""


class EventImagesStatus:
    """Upload status of an event's photos."""

    UPLOADING = "UPLOADING"
    SUSPENDED = "SUSPENDED"
    DONE = "DONE"


class GiftEventStatus:
    """Lifecycle of a gift event allotment."""

    ACTIVE = "ACTIVE"
    USED = "USED"
    INACTIVE = "INACTIVE"


class HandshakeStatus:
    """Lifecycle of a payment handshake."""

    READY = "ready"
    USED = "used"


class EventsLimitType:
    """Per-user event creation policy."""

    UNLIMITED = "unlimited"
    NUMBER = "number"


class Permission:
    """Permissions carried in the custom:permissions claim."""

    CREATE_EVENTS = "create-events"
    MANAGE_USERS = "manage-users"
    MANAGE_EVENTS = "manage-events"
    MANAGE_ORGANIZATION = "manage-organization"


class UserStatus:
    """Cognito user statuses inspected during sign-in."""

    UNCONFIRMED = "UNCONFIRMED"
    FORCE_CHANGE_PASSWORD = "FORCE_CHANGE_PASSWORD"
    CONFIRMED = "CONFIRMED"


# Sentinel organization of event mirror records
MIRROR_ORGANIZATION = "-"

# Event, mirror and face records expire after this many days
EVENT_RETENTION_DAYS = 365

# Tokens granted to a newly signed-up organization
STARTING_TOKENS = 1000

# Name resolution gives up after this many lookups
MAX_NAME_ATTEMPTS = 10

# Recognition collection creation retries on name collision
MAX_COLLECTION_RETRIES = 3

# Maximum files per presign or delete request
MAX_FILES_PER_REQUEST = 20

# Maximum upload size (100MB)
MAX_UPLOAD_SIZE = 100 * 1024 * 1024

# Faces indexed per photo
MAX_FACES_PER_PHOTO = 25

# Presigned upload URL lifetime
PRESIGN_EXPIRES_SECONDS = 3600

# Minutes after the last upload before an event is reconciled
STALE_UPLOAD_MINUTES = 3

# Photo renditions (prefix, width)
PHOTO_RENDITIONS = (("medium", 1200), ("small", 450))

# Object prefixes that hold an event's photos
PHOTO_PREFIXES = ("small", "medium", "original")

# Organization asset prefix and branding image widths
ASSETS_PREFIX = "organization-assets"
MAIN_IMAGE_WIDTH = 800
BRANDING_IMAGE_WIDTH = 200

# Branding asset types accepted by the presign endpoint
BRANDING_TYPES = ("logo", "mainImage", "watermark", "next-event-logo")

# Branding types versioned on every upload
VERSIONED_BRANDING_TYPES = ("logo", "mainImage")
