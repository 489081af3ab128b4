"""DES processing, key check values, key components and bitwise block operations."""