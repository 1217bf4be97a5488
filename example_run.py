"""
Run this script to see a full booking flow against in-memory collaborators:
 - preview the price of a 3-day rental with a GPS add-on
 - create the booking (pending / pending)
 - open a payment intent, settle it at the mock processor, confirm it
 - cancel the confirmed booking
 - print the audit trail
"""

from datetime import timedelta

from audit import AuditEmitter, InMemoryAuditSink
from booking_manager import BookingLifecycleManager
from booking_schemas import Actor, DateRange, utcnow
from catalog import InMemoryCatalog
from config import configure_logging
from payments.coordinator import PaymentCoordinator
from payments.processor import MockPaymentProcessor
from persistence.crud import InMemoryReservationStore


def main():
    configure_logging()
    sink = InMemoryAuditSink()
    audit = AuditEmitter(sink)
    processor = MockPaymentProcessor()
    manager = BookingLifecycleManager(InMemoryReservationStore(), InMemoryCatalog.demo(), audit=audit)
    payments = PaymentCoordinator(manager, processor, audit=audit)

    customer = Actor(ref="user_123")
    start = utcnow().date() + timedelta(days=7)
    dates = DateRange(start=start, end=start + timedelta(days=3))

    print("=== Price preview ===")
    quote = manager.preview_price("veh-midsize-1", dates, ["gps"])
    print(f"days={quote.pricing.total_days} base={quote.pricing.base_amount} "
          f"add-ons={quote.pricing.add_ons_amount} tax={quote.pricing.tax_amount} total={quote.total_amount}")

    print("\n=== Create booking ===")
    booking = manager.create_booking(customer.ref, "veh-midsize-1", dates, ["gps"])
    print(f"- {booking.id}: status={booking.status}, payment={booking.payment_status}, total={booking.total_amount}")

    print("\n=== Payment ===")
    intent = payments.initiate(booking.id, customer)
    processor.settle(intent.ref, "succeeded")
    booking = payments.confirm(booking.id, intent.ref, customer)
    print(f"- {booking.id}: status={booking.status}, payment={booking.payment_status}, ref={booking.payment_ref}")

    print("\n=== Cancel ===")
    booking = manager.cancel_booking(booking.id, customer, "Change of plans")
    print(f"- {booking.id}: status={booking.status}, reason={booking.cancellation.reason}")

    print("\n=== Audit trail ===")
    for event in sink.events:
        print(f"- {event.action} by {event.actor_ref}: {event.details}")


if __name__ == "__main__":
    main()
