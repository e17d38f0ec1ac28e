"""Due-record selection and the retry scheduler loop."""
