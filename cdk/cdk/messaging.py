"""
Topics and queues of the asynchronous pipelines.

Creates:
- Photos topic fed by object-created notifications under original/, fanned
  out to the resize and face-indexing queues
- Branding topic fed by notifications under organization-assets/original/,
  delivered to the branding resize queue
- Organization-deleted topic fanned out to the photo and face cleanup queues

Every queue has a dead-letter queue receiving messages after three failures.
Subscriptions keep the SNS envelope (no raw delivery) so consumers can read
message attributes.
"""

from typing import Callable

from aws_cdk import Duration
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_s3_notifications as s3n
from aws_cdk import aws_sns as sns
from aws_cdk import aws_sns_subscriptions as subscriptions
from aws_cdk import aws_sqs as sqs
from constructs import Construct

MAX_RECEIVE_COUNT = 3

# Object key prefixes that trigger the pipelines
PHOTOS_PREFIX = "original/"
BRANDING_PREFIX = "organization-assets/original/"


def _queue(stack: Construct, rn: Callable[[str], str], construct_id: str, name: str, timeout: Duration) -> sqs.Queue:
    """Create a queue with its dead-letter queue."""
    dead_letter_queue = sqs.Queue(
        stack,
        f"{construct_id}Dlq",
        queue_name=rn(f"{name}-dlq"),
        retention_period=Duration.days(14),
    )
    return sqs.Queue(
        stack,
        construct_id,
        queue_name=rn(name),
        # Must cover the consumer's timeout
        visibility_timeout=timeout,
        dead_letter_queue=sqs.DeadLetterQueue(max_receive_count=MAX_RECEIVE_COUNT, queue=dead_letter_queue),
    )


def create_messaging(
    stack: Construct,
    rn: Callable[[str], str],
    photo_bucket: s3.Bucket,
) -> dict[str, sns.Topic | sqs.Queue]:
    """Create the topics, queues and bucket notifications.

    Args:
        stack: CDK Construct (usually the Stack instance)
        rn: helper function to create resource names
        photo_bucket: Bucket whose uploads feed the pipelines

    Returns:
        Dict of topics and queues keyed by role
    """
    photos_topic = sns.Topic(stack, "PhotosTopic", topic_name=rn("eventlens-photos"))
    branding_topic = sns.Topic(stack, "BrandingTopic", topic_name=rn("eventlens-branding"))
    organization_deleted_topic = sns.Topic(
        stack, "OrganizationDeletedTopic", topic_name=rn("eventlens-organization-deleted")
    )

    resize_queue = _queue(stack, rn, "ResizeQueue", "eventlens-resize", Duration.seconds(900))
    faces_queue = _queue(stack, rn, "FacesQueue", "eventlens-faces", Duration.seconds(900))
    branding_queue = _queue(stack, rn, "BrandingQueue", "eventlens-branding-resize", Duration.seconds(900))
    delete_photos_queue = _queue(
        stack, rn, "DeleteOrganizationPhotosQueue", "eventlens-delete-organization-photos", Duration.seconds(900)
    )
    delete_faces_queue = _queue(
        stack, rn, "DeleteOrganizationFacesQueue", "eventlens-delete-organization-faces", Duration.seconds(900)
    )

    photos_topic.add_subscription(subscriptions.SqsSubscription(resize_queue))
    photos_topic.add_subscription(subscriptions.SqsSubscription(faces_queue))
    branding_topic.add_subscription(subscriptions.SqsSubscription(branding_queue))
    organization_deleted_topic.add_subscription(subscriptions.SqsSubscription(delete_photos_queue))
    organization_deleted_topic.add_subscription(subscriptions.SqsSubscription(delete_faces_queue))

    photo_bucket.add_event_notification(
        s3.EventType.OBJECT_CREATED,
        s3n.SnsDestination(photos_topic),
        s3.NotificationKeyFilter(prefix=PHOTOS_PREFIX),
    )
    photo_bucket.add_event_notification(
        s3.EventType.OBJECT_CREATED,
        s3n.SnsDestination(branding_topic),
        s3.NotificationKeyFilter(prefix=BRANDING_PREFIX),
    )

    return {
        "photos_topic": photos_topic,
        "branding_topic": branding_topic,
        "organization_deleted_topic": organization_deleted_topic,
        "resize_queue": resize_queue,
        "faces_queue": faces_queue,
        "branding_queue": branding_queue,
        "delete_photos_queue": delete_photos_queue,
        "delete_faces_queue": delete_faces_queue,
    }
