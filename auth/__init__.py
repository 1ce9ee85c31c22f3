"""auth/ -- Identity and entitlement core for AppGate.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/ or notify/. Notification delivery is passed in
as a collaborator (see auth.notifications.Notifier).
api/ imports from auth/, not the other way around.
"""
