"""
Gearbox - interactive installer and monitor for command-line developer tools.

Architecture:
- providers.py: Data types and collaborator protocols
- tasks.py: TaskRegistry (bounded-concurrency install execution, cancellation)
- bridge.py: UpdateBridge (worker events -> one UI message at a time)
- checks.py: SequentialCheckRunner (diagnostic probes, one in flight)
- runtime.py: Effect runners (Textual thread workers, synchronous)
- installer.py, manifest.py, catalog.py, probes.py: Collaborators (catalog also expands bundles)
- views/: Textual screen/widget components
- app.py: Console application

Extensibility points:
1. New installers: Implement the Installer protocol
2. New probes: Add a Probe to probes.default_probes()
3. New views: Add to views/, register in app.py SCREENS
"""
