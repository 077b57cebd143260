"""Workflow coordinators, outbound dispatch and reporting over the lifecycle kernel."""

from lifecycle_services.breach_report import BreachReportService
from lifecycle_services.handlers import (
    DeliverySettlementHandler,
    NotificationHandler,
    OutboundHandler,
    OutboundMessage,
    ShipmentOrderSyncHandler,
    default_handlers,
)
from lifecycle_services.order_workflow import OrderWorkflow
from lifecycle_services.outbound_dispatcher import OutboundDispatcher
from lifecycle_services.ports import (
    BillingPort,
    LoggingBilling,
    LoggingNotifier,
    NotificationPort,
    RecordingBilling,
    RecordingNotifier,
)
from lifecycle_services.return_workflow import ReturnWorkflow
from lifecycle_services.shipment_workflow import ShipmentWorkflow
from lifecycle_services.workflow_coordinator import WorkflowCoordinator

__all__ = [
    "BillingPort",
    "BreachReportService",
    "DeliverySettlementHandler",
    "LoggingBilling",
    "LoggingNotifier",
    "NotificationHandler",
    "NotificationPort",
    "OrderWorkflow",
    "OutboundDispatcher",
    "OutboundHandler",
    "OutboundMessage",
    "RecordingBilling",
    "RecordingNotifier",
    "ReturnWorkflow",
    "ShipmentOrderSyncHandler",
    "ShipmentWorkflow",
    "WorkflowCoordinator",
    "default_handlers",
]
