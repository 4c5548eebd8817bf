"""
landreg_services -- Stateful orchestration over the kernel and modules.

Contains the approval workflow engine, the wizard session orchestrator,
the action dispatcher with its handlers, the document store with its
promotion relay, and the ``LandRecordsOrchestrator`` composition root.
"""
