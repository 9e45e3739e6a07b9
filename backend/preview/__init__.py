"""
Project-to-map synchronization for the QGIS project preview.

`MapPreview` (preview.view) owns one map engine per mounted panel and keeps it in sync
with the selected project's layers, visibility and extent.
"""
