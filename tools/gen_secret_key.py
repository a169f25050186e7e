from cryptography.hazmat.primitives.ciphers.aead import AESGCM
import base64, sys

# Prints a fresh QR_SECRET_KEY (32 random bytes, base64url, no padding).
# Usage: python tools/gen_secret_key.py >> .env   (prefixes the variable name)
key = AESGCM.generate_key(bit_length=256)
value = base64.urlsafe_b64encode(key).decode().rstrip("=")
if "--raw" in sys.argv[1:]:
    print(value)
else:
    print(f"QR_SECRET_KEY={value}")
