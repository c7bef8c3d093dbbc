"""Order console: back-office and client order lifecycle coordination."""
