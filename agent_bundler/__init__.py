"""agent-bundler.

Release tooling for a desktop shell around an upstream command-line agent:

- ``bundle`` packs the upstream tool with a portable runtime and package-manager
  snapshot into a fully offline-installable resource directory.
- ``release-manifest`` classifies signed installers per OS/arch target and
  writes the ``latest.json`` update feed.
- ``offline-check`` installs the bundle into an isolated home with network
  egress blocked and waits for the local service to answer.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
