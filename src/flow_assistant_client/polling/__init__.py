from flow_assistant_client.polling.cadence import AdaptiveCadence, CadencePolicy
from flow_assistant_client.polling.controller import DeliveryMode, PollingController
from flow_assistant_client.polling.event_poller import EventPoller

__all__ = [
    "AdaptiveCadence",
    "CadencePolicy",
    "DeliveryMode",
    "EventPoller",
    "PollingController",
]
