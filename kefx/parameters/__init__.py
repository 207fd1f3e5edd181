from .parameter import Parameter, is_parameter
