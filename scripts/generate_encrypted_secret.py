# Script to encrypt a service secret (e.g. the GitHub token), binding it to a service name.
# Usage example:
# python scripts/generate_encrypted_secret.py --key "service_public_key.pem" --secret "ghp_xxx" --binding "ucoin-rewards"
import sys
import argparse

from ucoin_rewards.credentials import SecretEncryption

def main():
    parser = argparse.ArgumentParser(description='Encrypt a secret for the rewards service with service binding')
    parser.add_argument('--key', required=True, help='Path to public key PEM file')
    parser.add_argument('--secret', required=True, help='Secret value to encrypt')
    parser.add_argument('--binding', default='ucoin-rewards', help='Service name that will use this secret')

    args = parser.parse_args()

    try:
        with open(args.key, 'rb') as key_file:
            encrypted = SecretEncryption.encrypt_secret(args.secret, key_file.read(), args.binding)
        print(f"\nEncrypted secret (hex):\n{encrypted}\n")

        print("Example environment entry:")
        print(f"GITHUB_ENCRYPTED_TOKEN={encrypted}")
    except Exception as e:
        print(f"Error: {str(e)}", file=sys.stderr)
        sys.exit(1)

if __name__ == '__main__':
    main()
