"""JSON-file storage of key records."""