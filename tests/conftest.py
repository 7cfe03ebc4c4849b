import os

# Unit tests must not write call counts next to the sources.
os.environ.setdefault("RCBOT_TRACKING_DISABLED", "true")
