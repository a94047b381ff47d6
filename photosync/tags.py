# Tag names shared by the engine, the change classifier and the writers.

VERSION = "1.0.0"

# Tags owned by this tool, written to the XMP-photosync namespace.
OWN_NAMESPACE = "photosync"
CAMERA_ID = "CameraID"
VERSION_TAG = "PhotosyncVersion"
TIME_SOURCE = "TimeSource"
OWN_TAGS = (CAMERA_ID, VERSION_TAG, TIME_SOURCE)

# Time source recorded for positions and times that came from the device itself.
GPS_SOURCE = "GPS"
USER_SOURCE = "User"
OTHER_SOURCE = "Other"

POSITION_TAGS = ("GPSLatitude", "GPSLongitude", "GPSAltitude")
GPS_GROUP_TAGS = POSITION_TAGS + ("GPSDateTime",)

# Tags copied (as independent values) from the original into the proposed values.
COPIED_TAGS = (
    CAMERA_ID,
    "CreateDate",
    "DateTimeOriginal",
    "FileModifyDate",
    "GPSAltitude",
    "GPSDateTime",
    "GPSLatitude",
    "GPSLongitude",
    TIME_SOURCE,
)

# Tags compared between original and proposed values.
MONITORED_TAGS = (
    CAMERA_ID,
    "DateTimeOriginal",
    VERSION_TAG,
    "FileModifyDate",
    "GPSAltitude",
    "GPSLatitude",
    "GPSLongitude",
    TIME_SOURCE,
)

# Tags holding timestamps; their values are parsed into Timestamp objects on inspection.
TIME_TAGS = ("CreateDate", "DateTimeOriginal", "FileModifyDate", "GPSDateTime", "ModifyDate")
