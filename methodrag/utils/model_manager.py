import threading
from transformers import AutoModel, AutoTokenizer
import torch

class ModelManager:
    """Process-wide cache of loaded embedding models and tokenizers."""
    _instance = None
    _models = {}
    _tokenizers = {}
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(ModelManager, cls).__new__(cls)
        return cls._instance

    @staticmethod
    def get_device():
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")

    @classmethod
    def get_model(cls, model_name):
        with cls._lock:
            if model_name not in cls._models:
                cls._models[model_name] = cls._load_model(model_name)
            return cls._models[model_name]

    @classmethod
    def _load_model(cls, model_name):
        model = AutoModel.from_pretrained(model_name).to(cls.get_device())
        model.eval()
        return model

    @classmethod
    def get_tokenizer(cls, model_name):
        with cls._lock:
            if model_name not in cls._tokenizers:
                cls._tokenizers[model_name] = AutoTokenizer.from_pretrained(model_name)
            return cls._tokenizers[model_name]

model_manager = ModelManager()
