"""mailer/ -- Outbound account notifications (verification, reset, welcome).

Layer rule: mailer/ imports only core/ + stdlib. api/ wires a notifier onto
app.state; auth/ never sends mail itself.
"""
