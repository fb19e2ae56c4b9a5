"""
Amazon Bedrock service module.
Chat inference with Anthropic models and embeddings with Cohere/Titan on Bedrock.
"""

import boto3
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple
from botocore.exceptions import ClientError, NoCredentialsError, BotoCoreError

from config import aws_config, model_config
from providers import GenerationConfig, ModelProvider, ProviderError

logger = logging.getLogger(__name__)


class BedrockError(ProviderError):
    """Custom exception for Bedrock service errors"""
    pass


class BedrockService(ModelProvider):
    """
    Service class for Amazon Bedrock interactions.
    Messages use the plain {role, content} shape; system turns are lifted
    into the Anthropic `system` field.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        embed_model_id: Optional[str] = None,
        client: Any = None,
    ):
        self.model_id = model_id or model_config.bedrock_model_id
        self.embed_model_id = embed_model_id or model_config.bedrock_embed_model_id
        self.region = region or aws_config.region

        self.client = client or self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    @property
    def name(self) -> str:
        return f"Bedrock ({self.model_id})"

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            return session.client("bedrock-runtime")

        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except Exception as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    @staticmethod
    def _split_system(messages: List[Dict[str, str]]) -> Tuple[str, List[Dict[str, str]]]:
        """Separate system turns and merge consecutive same-role turns."""
        system_parts: List[str] = []
        turns: List[Dict[str, str]] = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content") or "(no content)"
            if role == "system":
                system_parts.append(content)
                continue
            if turns and turns[-1]["role"] == role:
                turns[-1]["content"] += "\n\n" + content
            else:
                turns.append({"role": role, "content": content})
        # The API requires the conversation to open with a user turn
        if not turns or turns[0]["role"] != "user":
            turns.insert(0, {"role": "user", "content": "(conversation start)"})
        return "\n\n".join(system_parts), turns

    def _format_request_body(self, messages: List[Dict[str, str]], config: GenerationConfig) -> Dict[str, Any]:
        """Format request body for Anthropic Claude models"""
        system_prompt, turns = self._split_system(messages)
        body: Dict[str, Any] = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": config.max_tokens,
            "messages": turns,
        }
        if system_prompt:
            body["system"] = system_prompt
        if config.temperature is not None:
            body["temperature"] = config.temperature
        if config.stop_sequences:
            body["stop_sequences"] = list(config.stop_sequences)
        return body

    @staticmethod
    def _client_error(e: ClientError) -> BedrockError:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        error_message = e.response.get("Error", {}).get("Message", str(e))
        logger.error(f"Bedrock API error: {error_code} - {error_message}")
        if error_code in ["ExpiredTokenException", "InvalidSignatureException"]:
            return BedrockError("AWS credentials expired. Please refresh.")
        return BedrockError(f"Bedrock API error: {error_message}")

    def generate(self, messages: List[Dict[str, str]],
                 config: Optional[GenerationConfig] = None) -> str:
        gen_config = config or GenerationConfig(max_tokens=model_config.max_tokens)
        request_body = self._format_request_body(messages, gen_config)
        logger.info(f"Invoking model: {self.model_id}")
        try:
            response = self.client.invoke_model(
                modelId=self.model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            raise self._client_error(e)
        except BotoCoreError as e:
            raise BedrockError(f"Bedrock transport error: {e}")

        return "".join(
            block.get("text", "")
            for block in response_body.get("content", [])
            if block.get("type") == "text"
        )

    def generate_stream(self, messages: List[Dict[str, str]],
                        config: Optional[GenerationConfig] = None) -> Iterator[str]:
        """Yield text deltas from invoke_model_with_response_stream."""
        gen_config = config or GenerationConfig(max_tokens=model_config.max_tokens)
        request_body = self._format_request_body(messages, gen_config)
        logger.info(f"Streaming from model: {self.model_id}")
        try:
            response = self.client.invoke_model_with_response_stream(
                modelId=self.model_id,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            for event in response["body"]:
                chunk = json.loads(event["chunk"]["bytes"])
                if chunk.get("type") == "content_block_delta":
                    delta = chunk.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield delta["text"]
        except ClientError as e:
            raise self._client_error(e)
        except BotoCoreError as e:
            raise BedrockError(f"Bedrock transport error: {e}")

    def _embed_body(self, text: str) -> Dict[str, Any]:
        if self.embed_model_id.startswith("amazon.titan"):
            return {"inputText": text[:8000]}
        # Cohere limit: 2048 chars per text
        return {"texts": [text[:2000]], "input_type": "search_document"}

    def embed(self, text: str) -> List[float]:
        """Embed one text using Bedrock Cohere Embed or Titan Embeddings."""
        try:
            response = self.client.invoke_model(
                modelId=self.embed_model_id,
                body=json.dumps(self._embed_body(text)),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except ClientError as e:
            raise self._client_error(e)
        except BotoCoreError as e:
            raise BedrockError(f"Bedrock transport error: {e}")

        if "embedding" in response_body:
            return [float(x) for x in response_body["embedding"]]
        embeddings = response_body.get("embeddings")
        if isinstance(embeddings, dict) and "float" in embeddings:
            embeddings = embeddings["float"]
        if isinstance(embeddings, list) and embeddings and isinstance(embeddings[0], list):
            return [float(x) for x in embeddings[0]]
        return []

    def check_health(self) -> bool:
        """Test the Bedrock connection"""
        try:
            self.generate(
                [{"role": "user", "content": "Hi"}],
                GenerationConfig(max_tokens=10, temperature=1.0),
            )
            return True
        except BedrockError as e:
            logger.warning(f"Bedrock health check failed: {e}")
            return False
