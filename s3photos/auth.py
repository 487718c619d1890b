import logging

import boto3
import requests
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError

from s3photos.config import SyncConfig
from s3photos.errors import RemoteUnavailable

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 5
READ_TIMEOUT = 60  # the diff function lists the whole bucket before answering


class AwsSessionManager:
    """
    Owns the boto3 session, the S3 and Lambda clients and the HTTP session
    used for presigned downloads. Credentials come from the ambient AWS
    chain (environment, profile, instance role).
    """

    def __init__(self, config: SyncConfig):
        self.config = config
        self.session = None
        self.s3 = None
        self.lambda_client = None
        self.http = None

    def client_config(self) -> BotoConfig:
        return BotoConfig(
            connect_timeout=CONNECT_TIMEOUT,
            read_timeout=READ_TIMEOUT,
            retries={"max_attempts": self.config.max_attempts, "mode": "standard"},
        )

    def open(self):
        """
        Build the session and clients. Fails with RemoteUnavailable when
        no credentials can be resolved.
        """
        if self.s3 is not None:
            return self

        kwargs = {}
        if self.config.profile:
            kwargs["profile_name"] = self.config.profile
        if self.config.region:
            kwargs["region_name"] = self.config.region

        try:
            session = boto3.Session(**kwargs)
            if session.get_credentials() is None:
                raise RemoteUnavailable(
                    "No AWS credentials found. Configure the environment, "
                    "a profile or an instance role."
                )
            client_config = self.client_config()
            self.s3 = session.client("s3", config=client_config)
            self.lambda_client = session.client("lambda", config=client_config)
        except BotoCoreError as e:
            raise RemoteUnavailable(f"Cannot initialise AWS clients: {e}") from e

        self.session = session
        self.http = requests.Session()
        logger.info(
            "AWS clients initialised (region=%s, bucket=%s)",
            session.region_name,
            self.config.bucket,
        )
        return self

    def close(self):
        for client in (self.s3, self.lambda_client):
            if client is not None:
                client.close()
        if self.http is not None:
            self.http.close()
        self.session = None
        self.s3 = None
        self.lambda_client = None
        self.http = None
