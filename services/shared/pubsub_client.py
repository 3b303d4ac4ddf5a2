from __future__ import annotations

from google.cloud import pubsub_v1


class PubSubSubscriber:
    """Pull client for the subscription carrying raw object-created notifications.

    The source bridge acknowledges messages it forwarded or will never accept,
    and nacks the ones it should see again after a transport or server error.
    """

    def __init__(self, project_id: str):
        self.subscriber = pubsub_v1.SubscriberClient()
        self.project_id = project_id

    def pull(self, subscription_name: str, max_messages: int) -> list[pubsub_v1.types.ReceivedMessage]:
        subscription_path = self.subscriber.subscription_path(self.project_id, subscription_name)
        response = self.subscriber.pull(
            request={"subscription": subscription_path, "max_messages": max_messages},
            timeout=30,
        )
        return list(response.received_messages)

    def acknowledge(self, subscription_name: str, ack_ids: list[str]) -> None:
        if not ack_ids:
            return
        subscription_path = self.subscriber.subscription_path(self.project_id, subscription_name)
        self.subscriber.acknowledge(request={"subscription": subscription_path, "ack_ids": ack_ids})

    def nack(self, subscription_name: str, ack_ids: list[str]) -> None:
        """Makes the messages immediately available for redelivery."""
        if not ack_ids:
            return
        subscription_path = self.subscriber.subscription_path(self.project_id, subscription_name)
        self.subscriber.modify_ack_deadline(
            request={"subscription": subscription_path, "ack_ids": ack_ids, "ack_deadline_seconds": 0}
        )
