"""Shared DynamoDB utilities.

This package centralizes:
- boto3 client/resource configuration
- the (single-attempt by default) call policy and error mapping
- cursor pagination token encoding/decoding
- typed, expressive errors for consistent HTTP problem responses
- transactional helpers

"""
