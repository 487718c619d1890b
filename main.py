#!/usr/bin/env python3
"""
Entry point for the S3 photo frame helper.
"""

import sys

from s3photos.cli import main

if __name__ == "__main__":
    sys.exit(main())
