"""
Hundred Days Tracker -- PySide6 application services.

Package layout:
    services/   Qt-facing services wrapping the tracker core
    paths       Platform data-directory resolution
    main        Logging setup and service construction
"""
