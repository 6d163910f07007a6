"""
channels — Per-channel delivery backends.

Each channel module exposes an async ``send(...)`` → DeliveryAttempt:
    sms_gateway      — panic SMS to emergency contacts
    web_push         — breach notice to the tourist's app
    police_dispatch  — control-room webhook (simulated without a URL)

Channels never raise for delivery failures. Retry logic lives in notifier.
"""
