"""Command line interface for syncing content and maintaining images.

Provides the ``hanamal`` entry point with the ``sync`` command and the
``images`` sub-app.

Examples::

    $ hanamal --help
    $ hanamal sync --prune
    $ python -m hanamal.cli images stats
"""
