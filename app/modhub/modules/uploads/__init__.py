"""
Uploads module.

Two paths into object storage:
- presigned: client asks for a URL per file, PUTs bytes directly, then finalizes the record
- proxied: multipart upload through the app (direct, image, mod-file)
"""
