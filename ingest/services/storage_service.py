import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from ingest.errors import AuthorizationError

# Presign methods map onto the S3 operation they authorize
SIGNED_OPERATIONS = {
    'PUT': 'put_object',
    'GET': 'get_object',
    'HEAD': 'head_object',
    'DELETE': 'delete_object',
}

MISSING_OBJECT_CODES = {'404', 'NoSuchKey', 'NotFound'}


def s3_client():
    """Create an S3-compatible client from the app configuration"""
    cfg = current_app.config
    return boto3.client(
        's3',
        endpoint_url=cfg.get('S3_ENDPOINT'),
        region_name=cfg.get('S3_REGION'),
        aws_access_key_id=cfg.get('AWS_ACCESS_KEY_ID'),
        aws_secret_access_key=cfg.get('AWS_SECRET_ACCESS_KEY'),
        config=BotoConfig(signature_version='s3v4', s3={'addressing_style': 'path'}),
    )


class ObjectStorageService:
    def __init__(self, client=None, bucket=None, prefix=None):
        self.client = client or s3_client()
        self.bucket = bucket or current_app.config['S3_BUCKET']
        self.prefix = current_app.config['STORAGE_PREFIX'] if prefix is None else prefix

    def object_key(self, path):
        path = path.lstrip('/')
        if not self.prefix:
            return path
        return f"{self.prefix.strip('/')}/{path}"

    def sign(self, path, method, ttl, content_type=None):
        """Issue a URL good for one method on one object until ttl seconds pass"""
        method = method.upper()
        if method not in SIGNED_OPERATIONS:
            raise ValueError(f"Unsupported signing method: {method}")

        params = {'Bucket': self.bucket, 'Key': self.object_key(path)}
        if content_type and method == 'PUT':
            params['ContentType'] = content_type

        try:
            return self.client.generate_presigned_url(
                SIGNED_OPERATIONS[method],
                Params=params,
                ExpiresIn=ttl,
                HttpMethod=method,
            )
        except (BotoCoreError, ClientError) as e:
            raise AuthorizationError(f"Failed to sign object URL: {e}") from e

    def _head(self, path):
        return self.client.head_object(Bucket=self.bucket, Key=self.object_key(path))

    def exists(self, path):
        try:
            self._head(path)
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in MISSING_OBJECT_CODES:
                return False
            raise

    def size(self, path):
        return int(self._head(path)['ContentLength'])

    def download(self, path, destination, on_progress=None):
        """Stream an object to a local file, reporting (bytes_done, total_bytes) as it goes"""
        callback = None
        if on_progress:
            total_size = self.size(path)
            transferred = 0

            def callback(bytes_amount):
                nonlocal transferred
                transferred += bytes_amount
                on_progress(transferred, total_size)

        self.client.download_file(self.bucket, self.object_key(path), destination, Callback=callback)
        return destination

    def upload(self, source, path, content_type=None):
        """Stream a local file into an object"""
        extra_args = {'ContentType': content_type} if content_type else None
        self.client.upload_file(source, self.bucket, self.object_key(path), ExtraArgs=extra_args)
        return path
